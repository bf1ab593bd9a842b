from __future__ import annotations

from typing import Any, Tuple

from fastapi import APIRouter, Body, Depends

from ..middleware.rbac import (
    get_current_user,
    get_task_engine,
    require_course_owner_or_admin,
    require_task_owner_or_admin,
)
from ..schemas import Course, Task, User
from ..services.task_engine import TaskAttemptEngine
from ..utils.responses import success_response

router = APIRouter(prefix="/api")

COURSE_TASKS = "/courses/{course_id}/tasks"
TASK = COURSE_TASKS + "/{task_id}"


@router.get("/tasks")
async def list_my_tasks(
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    tasks = await engine.list_tasks_for_user(user)
    return success_response(tasks, count=len(tasks))


@router.get("/tasks/my-submissions")
async def my_submissions(
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    return success_response(await engine.list_my_submissions(user))


@router.get(COURSE_TASKS)
async def list_course_tasks(
    course_id: str,
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    return success_response(await engine.list_course_tasks(course_id, user))


@router.post(COURSE_TASKS)
async def create_task(
    course_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Course] = Depends(require_course_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    user, _ = owner
    task = await engine.create_task(course_id, payload, user)
    return success_response(task, "Task created successfully", status_code=201)


@router.get(TASK)
async def get_task(
    course_id: str,
    task_id: str,
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    return success_response(await engine.get_task(course_id, task_id, user))


@router.put(TASK)
async def update_task(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    task = await engine.update_task(course_id, task_id, payload, owner[0])
    return success_response(task, "Task updated successfully")


@router.delete(TASK)
async def delete_task(
    course_id: str,
    task_id: str,
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    await engine.delete_task(course_id, task_id)
    return success_response(message="Task and its questions deleted successfully")


@router.post(TASK + "/publish")
async def publish_task(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    task = await engine.set_published(course_id, task_id, payload, owner[0])
    return success_response(task, "Task published" if task["isPublished"] else "Task unpublished")


@router.post(TASK + "/lock")
async def lock_task(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    task = await engine.set_locked(course_id, task_id, payload, owner[0])
    return success_response(task, "Task locked" if task["isLocked"] else "Task unlocked")


@router.post(TASK + "/questions")
async def add_question(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    question = await engine.add_question(course_id, task_id, payload)
    return success_response(question.dump(), "Question added successfully", status_code=201)


@router.put(TASK + "/questions/{question_id}")
async def update_question(
    course_id: str,
    task_id: str,
    question_id: str,
    payload: Any = Body(None),
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    question = await engine.update_question(course_id, task_id, question_id, payload)
    return success_response(question.dump(), "Question updated successfully")


@router.delete(TASK + "/questions/{question_id}")
async def delete_question(
    course_id: str,
    task_id: str,
    question_id: str,
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    await engine.delete_question(course_id, task_id, question_id)
    return success_response(message="Question deleted successfully")


@router.post(TASK + "/start")
async def start_attempt(
    course_id: str,
    task_id: str,
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    record = await engine.start_attempt(course_id, task_id, user)
    return success_response(record.dump())


@router.post(TASK + "/progress")
async def save_progress(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    record = await engine.save_progress(course_id, task_id, payload, user)
    return success_response(record.dump(), "Progress saved")


@router.post(TASK + "/submit")
async def submit_attempt(
    course_id: str,
    task_id: str,
    payload: Any = Body(None),
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    result = await engine.submit_attempt(course_id, task_id, payload, user)
    return success_response(result, "Task submitted successfully")


@router.get(TASK + "/overview")
async def task_overview(
    course_id: str,
    task_id: str,
    user: User = Depends(get_current_user),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    return success_response(await engine.get_overview(course_id, task_id, user))


@router.get(TASK + "/records")
async def task_records(
    course_id: str,
    task_id: str,
    owner: Tuple[User, Task] = Depends(require_task_owner_or_admin),
    engine: TaskAttemptEngine = Depends(get_task_engine),
):
    return success_response(await engine.get_task_records(course_id, task_id))
