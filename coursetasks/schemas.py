from __future__ import annotations

import math
from enum import Enum
from typing import Any, List, Mapping, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import ValidationError


class Role(str, Enum):
    ADMIN = "admin"
    TUTOR = "tutor"
    LEARNER = "learner"


class TaskType(str, Enum):
    """The only accepted task types; casing is exact."""

    HOMEWORK = "HOMEWORK"
    EXAM = "EXAM"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AvailabilityReason(str, Enum):
    UNPUBLISHED = "UNPUBLISHED"
    LOCKED = "LOCKED"
    PAST_DUE = "PAST_DUE"
    OPEN = "OPEN"


class CamelModel(BaseModel):
    """Python attributes in snake_case, JSON and stored attributes in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=False)

    def dump(self, **kwargs: Any) -> dict:
        return self.model_dump(by_alias=True, mode="json", **kwargs)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value)


def normalize_max_attempts(value: Any) -> int:
    """Missing or non-finite values fall back to a single attempt; 0 means unlimited."""
    if value is None or isinstance(value, bool):
        return 1
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number):
        return 1
    if number < 0:
        raise ValueError("maxAttempts must not be negative")
    return int(number)


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------
class User(CamelModel):
    user_id: str
    user_name: str = ""
    email: str = ""
    password: str = Field(default="", exclude=True)
    role: Role = Role.LEARNER
    profile_image: str = ""
    profile_image_key: str = ""
    enrolled_courses: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_learner(self) -> bool:
        return self.role == Role.LEARNER


class Course(CamelModel):
    course_uid: str
    course_id: str
    title: str = ""
    description: str = ""
    instructor: str = ""
    instructor_id: str = ""
    course_tag: str = ""
    students: List[str] = Field(default_factory=list)
    video_url: str = Field(default="", alias="videoURL")
    video_key: str = ""
    thumbnail_url: str = ""
    thumbnail_key: str = ""
    is_hidden: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Question(CamelModel):
    question_id: str
    task_id: str
    question_text: str = ""
    options: List[Any] = Field(default_factory=list)
    correct_answer: Any = ""
    explanation: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Task(CamelModel):
    task_id: str
    course_id: str
    course_uid: str = ""
    title: str = ""
    description: str = ""
    type: TaskType
    due_date: Optional[str] = None
    question_ids: List[str] = Field(default_factory=list)
    time_limit_sec: Optional[int] = None
    max_attempts: int = 1
    is_published: bool = False
    is_locked: bool = False
    created_by: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class GradedResponse(CamelModel):
    question_id: str
    answer: Any = None
    is_correct: bool = False


class TaskRecord(CamelModel):
    user_id: str
    task_id: str
    attempt_count: int = 0
    best_score: Optional[int] = None
    last_score: Optional[int] = None
    in_progress: bool = False
    saved_responses: List[Any] = Field(default_factory=list)
    last_question_index: int = 0
    started_at: Optional[str] = None
    submitted_at: Optional[str] = None
    last_saved_at: Optional[str] = None
    responses: List[GradedResponse] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Availability(CamelModel):
    visible: bool
    can_open: bool
    reason: AvailabilityReason


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------
class _Payload(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True, extra="ignore"
    )


class QuestionCreate(_Payload):
    question_text: str = Field(..., min_length=1)
    options: List[Any] = Field(..., min_length=1)
    correct_answer: Any
    explanation: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM

    @field_validator("correct_answer")
    @classmethod
    def _answer_required(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("correctAnswer is required")
        return value


class QuestionUpdate(_Payload):
    question_text: Optional[str] = Field(None, min_length=1)
    options: Optional[List[Any]] = Field(None, min_length=1)
    correct_answer: Optional[Any] = None
    explanation: Optional[str] = None
    difficulty: Optional[Difficulty] = None


class TaskCreate(_Payload):
    title: str = Field(..., min_length=1, max_length=100)
    type: TaskType
    description: str = Field("", max_length=1000)
    due_date: Optional[str] = None
    questions: List[QuestionCreate] = Field(default_factory=list)
    time_limit_sec: Optional[int] = Field(None, ge=0)
    max_attempts: int = 1
    is_published: bool = False
    is_locked: bool = False

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _default_max_attempts(cls, value: Any) -> int:
        return normalize_max_attempts(value)

    @field_validator("is_published", "is_locked", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> bool:
        return coerce_bool(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _blank_due_date(cls, value: Any) -> Any:
        return value or None


class TaskUpdate(_Payload):
    """Partial update: only the fields present in the payload are written."""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[TaskType] = None
    description: Optional[str] = Field(None, max_length=1000)
    due_date: Optional[str] = None
    time_limit_sec: Optional[int] = Field(None, ge=0)
    max_attempts: Optional[int] = None
    is_published: Optional[bool] = None
    is_locked: Optional[bool] = None

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _default_max_attempts(cls, value: Any) -> int:
        return normalize_max_attempts(value)

    @field_validator("is_published", "is_locked", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> bool:
        return coerce_bool(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _blank_due_date(cls, value: Any) -> Any:
        return value or None

    @field_validator("title", "type")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value


class PublishRequest(_Payload):
    is_published: bool = True

    @field_validator("is_published", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> bool:
        return coerce_bool(value)


class LockRequest(_Payload):
    is_locked: bool = True

    @field_validator("is_locked", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> bool:
        return coerce_bool(value)


class SubmittedResponse(_Payload):
    question_id: Optional[str] = None
    answer: Any = None


class SubmitRequest(_Payload):
    responses: List[SubmittedResponse] = Field(default_factory=list)


class SaveProgressRequest(_Payload):
    saved_responses: List[Any] = Field(default_factory=list)
    last_question_index: int = Field(0, ge=0)


class CourseCreate(_Payload):
    course_id: str = Field(..., min_length=1, max_length=20, pattern=r"^[A-Za-z0-9._-]+$")
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1000)
    instructor: Optional[str] = None
    course_tag: str = Field("", max_length=50)
    video_url: str = Field("", alias="videoURL")
    video_key: str = ""
    thumbnail_url: str = ""
    thumbnail_key: str = ""
    is_hidden: bool = False

    @field_validator("is_hidden", mode="before")
    @classmethod
    def _coerce_hidden(cls, value: Any) -> bool:
        return coerce_bool(value)


class CourseUpdate(_Payload):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    instructor: Optional[str] = None
    course_tag: Optional[str] = Field(None, max_length=50)
    video_url: Optional[str] = Field(None, alias="videoURL")
    video_key: Optional[str] = None
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    is_hidden: Optional[bool] = None


class UserCreate(_Payload):
    user_name: str = Field(..., min_length=1, max_length=20)
    email: str = Field(..., min_length=3, max_length=100, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6)
    role: Role = Role.LEARNER


class ProfileUpdate(_Payload):
    user_name: Optional[str] = Field(None, min_length=1, max_length=20)
    email: Optional[str] = Field(None, min_length=3, max_length=100, pattern=r"^[^@\s]+@[^@\s]+$")
    profile_image_key: Optional[str] = None


class PasswordChange(_Payload):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class RoleUpdate(_Payload):
    role: Role


M = TypeVar("M", bound=BaseModel)


def parse_payload(model: Type[M], payload: Any) -> M:
    """Validate an untyped request body into ``model``.

    Raises:
        ValidationError: With the first offending field in the message and all
            field errors under ``details["errors"]``.
    """
    if isinstance(payload, model):
        return payload
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(dict(payload))
    except pydantic.ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise ValidationError(
            f"Invalid {field}: {first.get('msg', 'invalid value')}",
            details={"errors": errors},
        ) from exc
