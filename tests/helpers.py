"""
Shared test helpers: a controllable clock, user seeding and auth headers.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from coursetasks.schemas import Role
from coursetasks.services.auth_service import create_jwt_token

TEST_JWT_SECRET = "unit-test-secret-with-enough-length-for-hs256"
BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PASSWORD = "secret123"


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def seed_people(users):
    """One admin, two tutors and two learners."""

    async def make(name, role):
        return await users.create(
            user_name=name, email=f"{name}@example.com", password=PASSWORD, role=role
        )

    return SimpleNamespace(
        admin=await make("root", Role.ADMIN),
        tutor=await make("tina", Role.TUTOR),
        other_tutor=await make("oscar", Role.TUTOR),
        learner=await make("lea", Role.LEARNER),
        other_learner=await make("liam", Role.LEARNER),
    )


def auth_headers(user):
    token = create_jwt_token(user.user_id, user.role.value)
    return {"Authorization": f"Bearer {token}"}
