from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import datetime
from typing import Callable, Optional

import uvicorn
import watchtower
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .aws_clients import logs_client
from .middleware.error_handler import register_error_handlers
from .middleware.jwt_auth import DEFAULT_EXEMPT, JWTAuthMiddleware
from .repositories import (
    CourseRepository,
    QuestionRepository,
    TaskRecordRepository,
    TaskRepository,
    UserRepository,
)
from .routes import courses as course_routes
from .routes import system as system_routes
from .routes import tasks as task_routes
from .routes import users as user_routes
from .services.course_service import CourseService
from .services.store import KeyValueStore, get_store
from .services.task_engine import TaskAttemptEngine
from .services.user_service import AvatarSigner, UserService
from .utils.clock import utcnow

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CLOUDWATCH_LOG_GROUP = os.getenv("CLOUDWATCH_LOG_GROUP")
REDACTED_HEADERS = {"authorization", "x-authorization", "cookie", "set-cookie"}

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Console logging, plus CloudWatch when ``CLOUDWATCH_LOG_GROUP`` is set."""
    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)

    if CLOUDWATCH_LOG_GROUP and not any(isinstance(h, watchtower.CloudWatchLogHandler) for h in root.handlers):
        cw_handler = watchtower.CloudWatchLogHandler(
            log_group_name=CLOUDWATCH_LOG_GROUP,
            boto3_client=logs_client(),
        )
        cw_handler.setLevel(LOG_LEVEL)
        root.addHandler(cw_handler)
        logger.info(f"CloudWatch logging enabled (log group {CLOUDWATCH_LOG_GROUP})")


def _describe_user(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is None:
        return "Anonymous"
    if isinstance(user, dict):
        return f"User(id={user.get('user_id')}, username={user.get('username')})"
    return f"User(id={user.user_id}, username={user.user_name})"


class LoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with method, path, status, latency and the caller."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        method = request.method
        path = request.scope.get("path", "")
        headers = {
            k: ("[REDACTED]" if k.lower() in REDACTED_HEADERS else v) for k, v in request.headers.items()
        }
        logger.debug(f"[{correlation_id}] {method} {path} Headers: {headers}")

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"[{correlation_id}] {method} {path} failed after {elapsed_ms:.1f}ms "
                f"{_describe_user(request)}: {type(e).__name__}"
            )
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[{correlation_id}] {method} {path} -> {response.status_code} "
            f"in {elapsed_ms:.1f}ms {_describe_user(request)} Headers: {headers}"
        )
        response.headers["X-Correlation-ID"] = correlation_id
        return response


def create_app(
    store: Optional[KeyValueStore] = None,
    clock: Callable[[], datetime] = utcnow,
    avatar_signer: Optional[AvatarSigner] = None,
) -> FastAPI:
    """Build the application around an explicit store (the configured one by default)."""
    store = store if store is not None else get_store()

    users = UserRepository(store)
    courses = CourseRepository(store)
    tasks = TaskRepository(store)
    questions = QuestionRepository(store)
    records = TaskRecordRepository(store)

    app = FastAPI(title="Course Tasks API")
    app.state.store = store
    app.state.users = users
    app.state.task_engine = TaskAttemptEngine(courses, tasks, questions, records, users, clock=clock)
    app.state.course_service = CourseService(courses, tasks, questions, users)
    app.state.user_service = UserService(users, courses, avatar_signer=avatar_signer)

    register_error_handlers(app)
    app.include_router(system_routes.router)
    app.include_router(course_routes.router)
    app.include_router(task_routes.router)
    app.include_router(user_routes.router)

    # Added last runs first: requests are logged even when auth rejects them
    app.add_middleware(JWTAuthMiddleware, exempt_paths=DEFAULT_EXEMPT)
    app.add_middleware(LoggingMiddleware)
    return app


def main() -> None:
    configure_logging()
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting Course Tasks API on port {port}")
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
