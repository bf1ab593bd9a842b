from __future__ import annotations

from typing import Any, Tuple

from fastapi import APIRouter, Body, Depends

from ..middleware.rbac import (
    get_course_service,
    get_current_user,
    require_course_owner_or_admin,
    require_roles,
)
from ..schemas import Course, Role, User
from ..services.course_service import CourseService
from ..utils.responses import success_response

router = APIRouter(prefix="/api/courses")


@router.get("")
async def list_courses(
    user: User = Depends(get_current_user),
    courses: CourseService = Depends(get_course_service),
):
    found = await courses.list_courses(user)
    return success_response([c.dump() for c in found], count=len(found))


@router.post("")
async def create_course(
    payload: Any = Body(None),
    user: User = Depends(require_roles(Role.TUTOR, Role.ADMIN)),
    courses: CourseService = Depends(get_course_service),
):
    course = await courses.create(payload, user)
    return success_response(course.dump(), "Course created successfully", status_code=201)


@router.get("/{course_id}")
async def get_course(
    course_id: str,
    user: User = Depends(get_current_user),
    courses: CourseService = Depends(get_course_service),
):
    course = await courses.get(course_id)
    return success_response(course.dump())


@router.put("/{course_id}")
async def update_course(
    course_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Course] = Depends(require_course_owner_or_admin),
    courses: CourseService = Depends(get_course_service),
):
    course = await courses.update(course_id, payload)
    return success_response(course.dump(), "Course updated successfully")


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    owner: Tuple[User, Course] = Depends(require_course_owner_or_admin),
    courses: CourseService = Depends(get_course_service),
):
    result = await courses.delete(course_id)
    return success_response(result, "Course deleted successfully")


@router.post("/{course_id}/subscribe")
async def subscribe(
    course_id: str,
    user: User = Depends(get_current_user),
    courses: CourseService = Depends(get_course_service),
):
    course = await courses.subscribe(course_id, user)
    return success_response(course.dump(), "Subscribed to course")


@router.post("/{course_id}/unsubscribe")
async def unsubscribe(
    course_id: str,
    user: User = Depends(get_current_user),
    courses: CourseService = Depends(get_course_service),
):
    course = await courses.unsubscribe(course_id, user)
    return success_response(course.dump(), "Unsubscribed from course")
