"""
RBAC (Role-Based Access Control) dependencies.

The JWT middleware only proves who the caller is. Roles are always read from
the stored user row, never from token claims, so a stale or forged role claim
cannot grant access.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends, Request

from ..errors import ForbiddenError, UnauthorizedError
from ..schemas import Course, Role, Task, User
from ..services.course_service import CourseService
from ..services.task_engine import TaskAttemptEngine
from ..utils.clock import isoformat, utcnow

logger = logging.getLogger(__name__)


def get_task_engine(request: Request) -> TaskAttemptEngine:
    return request.app.state.task_engine


def get_course_service(request: Request) -> CourseService:
    return request.app.state.course_service


async def get_current_user(request: Request) -> User:
    """
    Load the authenticated user.

    Raises:
        UnauthorizedError: If no verified token is attached to the request or
            the user it names no longer exists.
    """
    claims = getattr(request.state, "auth", None)
    if not claims or not claims.get("id"):
        raise UnauthorizedError("Not authorized, no token")

    user = await request.app.state.users.find_by_id(claims["id"])
    if user is None:
        logger.warning(f"Token for unknown user_id: {claims['id']}")
        raise UnauthorizedError("Not authorized, user not found")

    request.state.user = user
    return user


def require_roles(*roles: Role) -> Callable:
    """Dependency factory: the current user must hold one of ``roles``."""
    allowed = set(roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning(
                f"Access denied: user {user.user_id} with role {user.role.value} "
                f"needs one of {sorted(r.value for r in allowed)}"
            )
            raise ForbiddenError("Forbidden: insufficient role")
        return user

    return dependency


def can_manage_course(user: User, course: Course) -> bool:
    if user.is_admin:
        return True
    if user.role != Role.TUTOR:
        return False
    if course.instructor_id and course.instructor_id == user.user_id:
        return True
    # Courses created before instructorId was stored only name their instructor
    return bool(course.instructor) and course.instructor == user.user_name


async def require_course_owner_or_admin(
    course_id: str,
    user: User = Depends(get_current_user),
    courses: CourseService = Depends(get_course_service),
) -> Tuple[User, Course]:
    course = await courses.get(course_id)
    if not can_manage_course(user, course):
        raise ForbiddenError("Forbidden: you do not have permission to manage this course")
    return user, course


async def require_task_owner_or_admin(
    course_id: str,
    task_id: str,
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
) -> Tuple[User, Task]:
    _, task = await engine.require_task(course_id, task_id)
    if user.is_admin:
        return user, task
    if user.role == Role.TUTOR and task.created_by == user.user_id:
        return user, task
    raise ForbiddenError("Forbidden: you can only manage tasks you created")


def log_admin_operation(
    operation: str,
    user: User,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Write an audit line for an admin operation."""
    log_entry: Dict[str, Any] = {
        "event_type": "admin_operation",
        "operation": operation,
        "user_id": user.user_id,
        "username": user.user_name,
        "timestamp": isoformat(utcnow()),
    }
    if details:
        log_entry["details"] = details
    logger.info(f"ADMIN_OPERATION: {log_entry}")
