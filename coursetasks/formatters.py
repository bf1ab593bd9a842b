"""
Map raw single-table items to domain objects and back.

Stored items carry the key attributes (``PK``, ``SK``, ``GSI1PK``, ``GSI1SK``)
and an ``entityType`` marker next to the entity's own camelCase attributes.
The ``format_*`` functions drop the key attributes and return validated
models; the ``*_to_item`` functions return only the entity attributes, the
repositories add the keys.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .schemas import Course, Question, Task, TaskRecord, User

KEY_ATTRIBUTES = ("PK", "SK", "GSI1PK", "GSI1SK", "entityType")


def _strip_keys(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in item.items() if k not in KEY_ATTRIBUTES}


def format_user(item: Optional[Dict[str, Any]]) -> Optional[User]:
    if not item:
        return None
    data = _strip_keys(item)
    # Older rows stored nulls for the image fields.
    data["profileImage"] = data.get("profileImage") or ""
    data["profileImageKey"] = data.get("profileImageKey") or ""
    return User.model_validate(data)


def user_to_item(user: User) -> Dict[str, Any]:
    item = user.dump()
    item["password"] = user.password
    return item


def format_course(item: Optional[Dict[str, Any]]) -> Optional[Course]:
    if not item:
        return None
    return Course.model_validate(_strip_keys(item))


def course_to_item(course: Course) -> Dict[str, Any]:
    return course.dump()


def format_question(item: Optional[Dict[str, Any]]) -> Optional[Question]:
    if not item:
        return None
    return Question.model_validate(_strip_keys(item))


def question_to_item(question: Question) -> Dict[str, Any]:
    return question.dump()


def format_task(item: Optional[Dict[str, Any]]) -> Optional[Task]:
    if not item:
        return None
    return Task.model_validate(_strip_keys(item))


def task_to_item(task: Task) -> Dict[str, Any]:
    return task.dump()


def format_task_record(item: Optional[Dict[str, Any]]) -> Optional[TaskRecord]:
    if not item:
        return None
    data = _strip_keys(item)
    for name in ("attemptCount", "lastQuestionIndex"):
        if data.get(name) is None:
            data.pop(name, None)
    data["savedResponses"] = data.get("savedResponses") or []
    data["responses"] = data.get("responses") or []
    return TaskRecord.model_validate(data)
