"""
Task lifecycle, availability and attempt bookkeeping.

``TaskAttemptEngine`` sits between the routes and the repositories. Route
handlers pass the authenticated ``User`` and the raw request body; the engine
validates the body, enforces availability and the attempt cap, grades
submissions and keeps the one ``TaskRecord`` per (user, task) up to date.

Ownership checks (who may edit a task) happen in
``coursetasks.middleware.rbac`` before the engine is called.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from ..errors import ConditionFailedError, ConflictError, ForbiddenError, NotAvailableError, NotFoundError, ValidationError
from ..repositories import CourseRepository, QuestionRepository, TaskRecordRepository, TaskRepository, UserRepository
from ..schemas import (
    Availability,
    AvailabilityReason,
    Course,
    GradedResponse,
    LockRequest,
    PublishRequest,
    Question,
    QuestionCreate,
    QuestionUpdate,
    Role,
    SaveProgressRequest,
    SubmitRequest,
    Task,
    TaskCreate,
    TaskRecord,
    TaskUpdate,
    User,
    parse_payload,
)
from ..utils.clock import isoformat, parse_timestamp, utcnow
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

LEARNER_QUESTION_FIELDS = ("questionId", "questionText", "options", "difficulty")
QUESTION_ID_RETRIES = 3


def compute_availability(task: Task, now: datetime) -> Availability:
    """
    Availability of a task at ``now``.

    Checks run in a fixed order: unpublished, then locked, then past due. An
    unparseable due date is treated as no due date.
    """
    if not task.is_published:
        return Availability(visible=False, can_open=False, reason=AvailabilityReason.UNPUBLISHED)
    if task.is_locked:
        return Availability(visible=True, can_open=False, reason=AvailabilityReason.LOCKED)
    due = parse_timestamp(task.due_date)
    if due is not None and now > due:
        return Availability(visible=True, can_open=False, reason=AvailabilityReason.PAST_DUE)
    return Availability(visible=True, can_open=True, reason=AvailabilityReason.OPEN)


def sanitize_question(question: Question, role: Role) -> Dict[str, Any]:
    """Learners never receive ``correctAnswer`` or ``explanation``."""
    data = question.dump()
    if role == Role.LEARNER:
        return {k: data[k] for k in LEARNER_QUESTION_FIELDS}
    return data


def sanitize_questions(questions: Iterable[Question], role: Role) -> List[Dict[str, Any]]:
    return [sanitize_question(q, role) for q in questions]


def attempts_remaining(task: Task, attempt_count: int) -> Optional[int]:
    # 0 means unlimited
    if not task.max_attempts:
        return None
    return max(0, task.max_attempts - attempt_count)


def score_stats(records: Iterable[TaskRecord]) -> Dict[str, Any]:
    scores = [
        r.best_score
        for r in records
        if isinstance(r.best_score, (int, float)) and math.isfinite(r.best_score)
    ]
    if not scores:
        return {"count": 0, "min": None, "max": None, "average": None}
    return {
        "count": len(scores),
        "min": min(scores),
        "max": max(scores),
        "average": sum(scores) / len(scores),
    }


def stringify_answer(value: Any) -> str:
    """String form of a JSON answer value: ``true``/``false`` for booleans, no ``.0`` on integral floats."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def grade_responses(
    questions: Iterable[Question], responses: Iterable[Any]
) -> Tuple[int, List[GradedResponse]]:
    """
    Grade submitted responses against the task's questions.

    Entries without a ``questionId`` are skipped, and only the first response
    per question counts. An answer is correct iff its string form equals the
    string form of ``correctAnswer`` exactly.
    """
    by_id = {q.question_id: q for q in questions}
    graded: List[GradedResponse] = []
    seen = set()
    score = 0
    for response in responses:
        question_id = response.question_id
        if not question_id or question_id in seen:
            continue
        seen.add(question_id)
        question = by_id.get(question_id)
        is_correct = (
            question is not None
            and response.answer is not None
            and stringify_answer(response.answer) == stringify_answer(question.correct_answer)
        )
        if is_correct:
            score += 1
        graded.append(GradedResponse(question_id=question_id, answer=response.answer, is_correct=is_correct))
    return score, graded


class TaskAttemptEngine:
    def __init__(
        self,
        courses: CourseRepository,
        tasks: TaskRepository,
        questions: QuestionRepository,
        records: TaskRecordRepository,
        users: UserRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.courses = courses
        self.tasks = tasks
        self.questions = questions
        self.records = records
        self.users = users
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    async def _require_course(self, course_id: str) -> Course:
        course = await self.courses.find_by_course_id(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    async def require_task(self, course_id: str, task_id: str) -> Tuple[Course, Task]:
        course = await self._require_course(course_id)
        task = await self.tasks.find(course.course_uid, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return course, task

    async def _ordered_questions(self, task: Task) -> List[Question]:
        questions = await self.questions.find_by_task(task.task_id)
        position = {qid: i for i, qid in enumerate(task.question_ids)}
        return sorted(
            questions,
            key=lambda q: (position.get(q.question_id, len(position)), q.created_at or ""),
        )

    def _availability_for(self, task: Task) -> Availability:
        return compute_availability(task, self.clock())

    def _ensure_open(self, task: Task, user: User) -> Availability:
        availability = self._availability_for(task)
        if user.is_learner and not availability.can_open:
            raise NotAvailableError(availability.reason.value)
        return availability

    async def _task_view(self, task: Task, user: User) -> Dict[str, Any]:
        questions = await self._ordered_questions(task)
        return {
            **task.dump(),
            "availability": self._availability_for(task).dump(),
            "questions": sanitize_questions(questions, user.role),
        }

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------
    async def create_task(self, course_id: str, payload: Any, user: User) -> Dict[str, Any]:
        data = parse_payload(TaskCreate, payload)
        course = await self._require_course(course_id)

        task_id = generate_id()
        created: List[Question] = []
        for q in data.questions:
            created.append(
                await self.questions.create(
                    task_id,
                    question_text=q.question_text,
                    options=q.options,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                    difficulty=q.difficulty,
                )
            )

        task = Task(
            task_id=task_id,
            course_id=course.course_id,
            course_uid=course.course_uid,
            title=data.title,
            description=data.description,
            type=data.type,
            due_date=data.due_date,
            question_ids=[q.question_id for q in created],
            time_limit_sec=data.time_limit_sec,
            max_attempts=data.max_attempts,
            is_published=data.is_published,
            is_locked=data.is_locked,
            created_by=user.user_id,
        )
        try:
            task = await self.tasks.create(task)
        except Exception:
            await self.questions.remove_by_task(task_id)
            raise

        return {
            **task.dump(),
            "availability": self._availability_for(task).dump(),
            "questions": sanitize_questions(created, user.role),
        }

    async def update_task(self, course_id: str, task_id: str, payload: Any, user: User) -> Dict[str, Any]:
        # Validation (including the task type) happens before anything is written.
        data = parse_payload(TaskUpdate, payload)
        fields = data.model_dump(by_alias=True, mode="json", exclude_unset=True)
        if not fields:
            raise ValidationError("No valid fields to update")

        course = await self._require_course(course_id)
        task = await self.tasks.update(course.course_uid, task_id, fields)
        if task is None:
            raise NotFoundError("Task not found")
        logger.info(f"Updated task {task_id}: {sorted(fields)}")
        return await self._task_view(task, user)

    async def set_published(self, course_id: str, task_id: str, payload: Any, user: User) -> Dict[str, Any]:
        data = parse_payload(PublishRequest, payload)
        return await self._set_flag(course_id, task_id, "isPublished", data.is_published, user)

    async def set_locked(self, course_id: str, task_id: str, payload: Any, user: User) -> Dict[str, Any]:
        data = parse_payload(LockRequest, payload)
        return await self._set_flag(course_id, task_id, "isLocked", data.is_locked, user)

    async def _set_flag(self, course_id: str, task_id: str, name: str, value: bool, user: User) -> Dict[str, Any]:
        course = await self._require_course(course_id)
        task = await self.tasks.update(course.course_uid, task_id, {name: value})
        if task is None:
            raise NotFoundError("Task not found")
        logger.info(f"Set {name}={value} on task {task_id}")
        return await self._task_view(task, user)

    async def delete_task(self, course_id: str, task_id: str) -> Task:
        """Delete a task after its questions. Task records are kept as history."""
        course, task = await self.require_task(course_id, task_id)
        await self.questions.remove_by_task(task.task_id)
        removed = await self.tasks.remove(course.course_uid, task.task_id)
        if removed is None:
            raise NotFoundError("Task not found")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_course_tasks(self, course_id: str, user: User) -> List[Dict[str, Any]]:
        course = await self._require_course(course_id)
        tasks = await self.tasks.find_by_course(course.course_uid)
        if user.is_learner:
            tasks = [t for t in tasks if self._availability_for(t).visible]
        return list(await asyncio.gather(*(self._task_view(t, user) for t in tasks)))

    async def get_task(self, course_id: str, task_id: str, user: User) -> Dict[str, Any]:
        _, task = await self.require_task(course_id, task_id)
        if user.is_learner and not self._availability_for(task).visible:
            # Unpublished tasks do not exist as far as learners are concerned
            raise NotFoundError("Task not found")
        return await self._task_view(task, user)

    async def list_tasks_for_user(self, user: User) -> List[Dict[str, Any]]:
        """Admins see every task, tutors the tasks they created, learners the visible tasks of their courses."""
        if user.role == Role.ADMIN:
            tasks = await self.tasks.find_all()
        elif user.role == Role.TUTOR:
            tasks = await self.tasks.find_by_creator(user.user_id)
        else:
            courses = await asyncio.gather(*(self.courses.find_by_course_id(c) for c in user.enrolled_courses))
            per_course = await asyncio.gather(
                *(self.tasks.find_by_course(c.course_uid) for c in courses if c is not None)
            )
            tasks = [t for group in per_course for t in group if self._availability_for(t).visible]
        return list(await asyncio.gather(*(self._task_view(t, user) for t in tasks)))

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------
    async def _change_question_ids(
        self, course_uid: str, task_id: str, change: Callable[[List[str]], List[str]]
    ) -> Task:
        for _ in range(QUESTION_ID_RETRIES):
            task = await self.tasks.find(course_uid, task_id)
            if task is None:
                raise NotFoundError("Task not found")
            try:
                updated = await self.tasks.update(
                    course_uid,
                    task_id,
                    {"questionIds": change(list(task.question_ids))},
                    expected_updated_at=task.updated_at,
                )
            except ConflictError:
                logger.info(f"Question order of task {task_id} changed concurrently, retrying")
                continue
            if updated is None:
                raise NotFoundError("Task not found")
            return updated
        raise ConflictError("Task was modified concurrently, please retry")

    async def add_question(self, course_id: str, task_id: str, payload: Any) -> Question:
        data = parse_payload(QuestionCreate, payload)
        course, task = await self.require_task(course_id, task_id)
        question = await self.questions.create(
            task.task_id,
            question_text=data.question_text,
            options=data.options,
            correct_answer=data.correct_answer,
            explanation=data.explanation,
            difficulty=data.difficulty,
        )
        try:
            await self._change_question_ids(
                course.course_uid, task.task_id, lambda ids: ids + [question.question_id]
            )
        except Exception:
            await self.questions.remove(task.task_id, question.question_id)
            raise
        return question

    async def update_question(self, course_id: str, task_id: str, question_id: str, payload: Any) -> Question:
        data = parse_payload(QuestionUpdate, payload)
        fields = data.model_dump(by_alias=True, mode="json", exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValidationError("No valid fields to update")
        _, task = await self.require_task(course_id, task_id)
        question = await self.questions.update(task.task_id, question_id, fields)
        if question is None:
            raise NotFoundError("Question not found")
        return question

    async def delete_question(self, course_id: str, task_id: str, question_id: str) -> Question:
        course, task = await self.require_task(course_id, task_id)
        removed = await self.questions.remove(task.task_id, question_id)
        if removed is None:
            raise NotFoundError("Question not found")
        await self._change_question_ids(
            course.course_uid, task.task_id, lambda ids: [i for i in ids if i != question_id]
        )
        return removed

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------
    async def start_attempt(self, course_id: str, task_id: str, user: User) -> TaskRecord:
        """
        Open (or resume) an attempt.

        An attempt already in progress is returned unchanged. Starting does not
        count as an attempt; only ``submit_attempt`` increments ``attemptCount``.
        Learners with no attempts left cannot start; staff can always preview.
        """
        _, task = await self.require_task(course_id, task_id)
        self._ensure_open(task, user)

        existing = await self.records.find(user.user_id, task.task_id)
        if existing is not None and existing.in_progress:
            return existing

        attempt_count = existing.attempt_count if existing else 0
        if user.is_learner and attempts_remaining(task, attempt_count) == 0:
            raise ForbiddenError("No attempts remaining", reason="NO_ATTEMPTS_REMAINING")

        now = isoformat(self.clock())
        record = await self.records.upsert(
            user.user_id,
            task.task_id,
            {
                "inProgress": True,
                "startedAt": now,
                "savedResponses": [],
                "lastQuestionIndex": 0,
            },
        )
        logger.info(f"User {user.user_id} started task {task.task_id}")
        return record

    async def save_progress(self, course_id: str, task_id: str, payload: Any, user: User) -> TaskRecord:
        data = parse_payload(SaveProgressRequest, payload)
        _, task = await self.require_task(course_id, task_id)
        try:
            return await self.records.upsert(
                user.user_id,
                task.task_id,
                {
                    "savedResponses": data.saved_responses,
                    "lastQuestionIndex": data.last_question_index,
                    "lastSavedAt": isoformat(self.clock()),
                },
                condition=Attr("inProgress").eq(True),
            )
        except ConditionFailedError as e:
            raise ValidationError("No attempt in progress, call start first") from e

    async def submit_attempt(self, course_id: str, task_id: str, payload: Any, user: User) -> Dict[str, Any]:
        data = parse_payload(SubmitRequest, payload)
        _, task = await self.require_task(course_id, task_id)
        self._ensure_open(task, user)

        existing = await self.records.find(user.user_id, task.task_id)
        previous_count = existing.attempt_count if existing else 0
        if attempts_remaining(task, previous_count) == 0:
            raise ForbiddenError("No attempts remaining", reason="NO_ATTEMPTS_REMAINING")

        questions = await self._ordered_questions(task)
        score, graded = grade_responses(questions, data.responses)

        previous_best = existing.best_score if existing and existing.best_score is not None else 0
        best_score = max(previous_best, score)
        attempt_count = previous_count + 1

        # The write only lands if nobody submitted since the record was read.
        condition = Attr("attemptCount").eq(previous_count)
        if previous_count == 0:
            condition = condition | Attr("attemptCount").not_exists()

        try:
            record = await self.records.upsert(
                user.user_id,
                task.task_id,
                {
                    "attemptCount": attempt_count,
                    "lastScore": score,
                    "bestScore": best_score,
                    "responses": [r.dump() for r in graded],
                    "inProgress": False,
                    "startedAt": None,
                    "submittedAt": isoformat(self.clock()),
                    "savedResponses": [],
                    "lastQuestionIndex": 0,
                },
                condition=condition,
            )
        except ConditionFailedError as e:
            logger.warning(f"Concurrent submission for task {task.task_id} by user {user.user_id}")
            raise ConflictError("Another submission for this task was recorded first, please retry") from e

        total = len(questions)
        logger.info(
            f"User {user.user_id} submitted task {task.task_id}: score={score}/{total} attempt={attempt_count}"
        )
        return {
            "score": score,
            "lastScore": record.last_score,
            "bestScore": record.best_score,
            "finalScore": record.best_score,
            "attemptCount": record.attempt_count,
            "attemptsRemaining": attempts_remaining(task, record.attempt_count),
            "totalQuestions": total,
            "percentage": round(score / total * 100) if total else 0,
            "responses": [r.dump() for r in record.responses],
            "submittedAt": record.submitted_at,
        }

    async def get_overview(self, course_id: str, task_id: str, user: User) -> Dict[str, Any]:
        _, task = await self.require_task(course_id, task_id)
        availability = self._availability_for(task)
        if user.is_learner and not availability.visible:
            raise NotFoundError("Task not found")

        record, all_records = await asyncio.gather(
            self.records.find(user.user_id, task.task_id),
            self.records.find_by_task(task.task_id),
        )
        if record is None:
            progress = TaskRecord(user_id=user.user_id, task_id=task.task_id).dump()
        else:
            progress = record.dump()
        progress["finalScore"] = progress.get("bestScore")
        progress["attemptsRemaining"] = attempts_remaining(task, progress.get("attemptCount") or 0)

        return {
            "task": task.dump(),
            "availability": availability.dump(),
            "progress": progress,
            "stats": score_stats(all_records),
        }

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    async def get_task_records(self, course_id: str, task_id: str) -> Dict[str, Any]:
        """Split the course's learners into those who submitted the task and those who did not."""
        course, task = await self.require_task(course_id, task_id)
        records = [r for r in await self.records.find_by_task(task.task_id) if r.attempt_count > 0]
        completed_ids = {r.user_id for r in records}
        pending_ids = [sid for sid in course.students if sid not in completed_ids]

        users = {u.user_id: u for u in await self.users.find_by_ids([*completed_ids, *pending_ids])}

        def identity(user_id: str) -> Dict[str, Any]:
            found = users.get(user_id)
            return {
                "userId": user_id,
                "userName": found.user_name if found else "Unknown User",
                "email": found.email if found else "",
            }

        completed = [{**r.dump(), **identity(r.user_id)} for r in records]
        not_completed = [identity(sid) for sid in pending_ids]
        return {
            "completedLearners": completed,
            "notCompletedLearners": not_completed,
            "totalEnrolled": len(course.students),
            "totalCompleted": len(completed),
            "stats": score_stats(records),
        }

    async def list_my_submissions(self, user: User) -> List[Dict[str, Any]]:
        records = await self.records.find_by_user(user.user_id)
        tasks = await asyncio.gather(*(self.tasks.find_by_id(r.task_id) for r in records))
        result = []
        for record, task in zip(records, tasks):
            summary = None
            if task is not None:
                summary = {
                    "taskId": task.task_id,
                    "title": task.title,
                    "courseId": task.course_id,
                    "type": task.type.value,
                }
            result.append({**record.dump(), "finalScore": record.best_score, "task": summary})
        return result
