"""
Pytest configuration and fixtures
"""
import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Register pytest-asyncio plugin explicitly
pytest_plugins = ["pytest_asyncio"]

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from coursetasks.index import create_app  # noqa: E402
from coursetasks.repositories import (  # noqa: E402
    CourseRepository,
    QuestionRepository,
    TaskRecordRepository,
    TaskRepository,
    UserRepository,
)
from coursetasks.services.course_service import CourseService  # noqa: E402
from coursetasks.services.store import InMemoryStore  # noqa: E402
from coursetasks.services.task_engine import TaskAttemptEngine  # noqa: E402
from coursetasks.services.user_service import UserService  # noqa: E402
from coursetasks.utils.jwt_secret import clear_jwt_secret_cache  # noqa: E402
from tests.helpers import TEST_JWT_SECRET, FixedClock, seed_people  # noqa: E402


@pytest.fixture(autouse=True)
def jwt_env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.delenv("PYTHON_ENV", raising=False)
    clear_jwt_secret_cache()
    yield
    clear_jwt_secret_cache()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def repos(store):
    return SimpleNamespace(
        users=UserRepository(store),
        courses=CourseRepository(store),
        tasks=TaskRepository(store),
        questions=QuestionRepository(store),
        records=TaskRecordRepository(store),
    )


@pytest.fixture
def engine(repos, clock):
    return TaskAttemptEngine(
        repos.courses, repos.tasks, repos.questions, repos.records, repos.users, clock=clock
    )


@pytest.fixture
def course_service(repos):
    return CourseService(repos.courses, repos.tasks, repos.questions, repos.users)


@pytest.fixture
def user_service(repos):
    return UserService(repos.users, repos.courses)


@pytest.fixture
def app(store, clock):
    return create_app(store=store, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def people(repos):
    """Seeded users for the synchronous HTTP tests (async tests await ``seed_people``)."""
    return asyncio.run(seed_people(repos.users))
