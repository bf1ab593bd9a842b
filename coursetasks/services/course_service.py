"""
Course management and enrolment.

Enrolment touches two rows (``User.enrolledCourses`` and ``Course.students``)
that the store cannot update atomically. ``Saga`` runs the two writes in
order and undoes the completed ones when a later step fails.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import NotFoundError, ValidationError
from ..repositories import CourseRepository, QuestionRepository, TaskRepository, UserRepository
from ..schemas import Course, CourseCreate, CourseUpdate, User, parse_payload

logger = logging.getLogger(__name__)

Step = Callable[[], Awaitable[Any]]


class Saga:
    """
    Run steps in order; on failure run the compensations of the steps that
    already completed, newest first, then re-raise the original error.
    """

    def __init__(self, name: str):
        self.name = name
        self._steps: List[Tuple[str, Step, Optional[Step]]] = []

    def step(self, label: str, action: Step, compensate: Optional[Step] = None) -> "Saga":
        self._steps.append((label, action, compensate))
        return self

    async def run(self) -> List[Any]:
        results: List[Any] = []
        done: List[Tuple[str, Optional[Step]]] = []
        for label, action, compensate in self._steps:
            try:
                results.append(await action())
            except Exception:
                logger.error(f"{self.name}: step '{label}' failed, compensating {len(done)} step(s)")
                await self._compensate(done)
                raise
            done.append((label, compensate))
        return results

    async def _compensate(self, done: List[Tuple[str, Optional[Step]]]) -> None:
        for label, compensate in reversed(done):
            if compensate is None:
                continue
            try:
                await compensate()
            except Exception:
                # The original failure is what the caller sees; a failed
                # rollback needs manual repair.
                logger.exception(f"{self.name}: compensation for '{label}' failed")


class CourseService:
    def __init__(
        self,
        courses: CourseRepository,
        tasks: TaskRepository,
        questions: QuestionRepository,
        users: UserRepository,
    ):
        self.courses = courses
        self.tasks = tasks
        self.questions = questions
        self.users = users

    async def get(self, course_id: str) -> Course:
        course = await self.courses.find_by_course_id(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    async def list_courses(self, user: User) -> List[Course]:
        courses = await self.courses.find_all()
        if user.is_learner:
            courses = [c for c in courses if not c.is_hidden]
        return sorted(courses, key=lambda c: c.created_at or "")

    async def create(self, payload: Any, user: User) -> Course:
        data = parse_payload(CourseCreate, payload)
        instructor = data.instructor or user.user_name
        # The creating tutor owns the course; admins may name another instructor.
        instructor_id = user.user_id if instructor == user.user_name else ""
        return await self.courses.create(
            course_id=data.course_id,
            title=data.title,
            description=data.description,
            instructor=instructor,
            instructor_id=instructor_id,
            course_tag=data.course_tag,
            video_url=data.video_url,
            video_key=data.video_key,
            thumbnail_url=data.thumbnail_url,
            thumbnail_key=data.thumbnail_key,
            is_hidden=data.is_hidden,
        )

    async def update(self, course_id: str, payload: Any) -> Course:
        data = parse_payload(CourseUpdate, payload)
        updates = data.model_dump(by_alias=True, mode="json", exclude_unset=True, exclude_none=True)
        if not updates:
            raise ValidationError("No valid fields to update")
        course = await self.get(course_id)
        updated = await self.courses.update(course.course_uid, updates)
        if updated is None:
            raise NotFoundError("Course not found")
        return updated

    async def delete(self, course_id: str) -> Dict[str, Any]:
        """Delete a course together with its tasks and their questions."""
        course = await self.get(course_id)
        tasks = await self.tasks.find_by_course(course.course_uid)
        for task in tasks:
            await self.questions.remove_by_task(task.task_id)
            await self.tasks.remove(course.course_uid, task.task_id)

        for student in await self.users.find_by_ids(course.students):
            remaining = [c for c in student.enrolled_courses if c != course.course_id]
            await self.users.set_enrolled_courses(student.user_id, remaining)

        await self.courses.remove(course.course_uid)
        logger.info(f"Deleted course {course.course_id} with {len(tasks)} task(s)")
        return {"courseId": course.course_id, "deletedTasks": len(tasks)}

    async def subscribe(self, course_id: str, user: User) -> Course:
        course = await self.get(course_id)
        if user.user_id in course.students and course.course_id in user.enrolled_courses:
            return course

        saga = Saga(f"subscribe {user.user_id} to {course.course_id}")
        saga.step(
            "enrol user",
            lambda: self.users.set_enrolled_courses(user.user_id, [*user.enrolled_courses, course.course_id]),
            lambda: self.users.set_enrolled_courses(user.user_id, user.enrolled_courses),
        )
        saga.step(
            "add student",
            lambda: self.courses.set_students(course.course_uid, [*course.students, user.user_id]),
            lambda: self.courses.set_students(course.course_uid, course.students),
        )
        _, updated = await saga.run()
        if updated is None:
            raise NotFoundError("Course not found")
        logger.info(f"User {user.user_id} subscribed to {course.course_id}")
        return updated

    async def unsubscribe(self, course_id: str, user: User) -> Course:
        course = await self.get(course_id)
        if user.user_id not in course.students and course.course_id not in user.enrolled_courses:
            return course

        saga = Saga(f"unsubscribe {user.user_id} from {course.course_id}")
        saga.step(
            "drop enrolment",
            lambda: self.users.set_enrolled_courses(
                user.user_id, [c for c in user.enrolled_courses if c != course.course_id]
            ),
            lambda: self.users.set_enrolled_courses(user.user_id, user.enrolled_courses),
        )
        saga.step(
            "remove student",
            lambda: self.courses.set_students(
                course.course_uid, [s for s in course.students if s != user.user_id]
            ),
            lambda: self.courses.set_students(course.course_uid, course.students),
        )
        _, updated = await saga.run()
        if updated is None:
            raise NotFoundError("Course not found")
        logger.info(f"User {user.user_id} unsubscribed from {course.course_id}")
        return updated
