"""
Task repository.

PK = COURSE#<courseUid>
SK = TASK#<taskId>
GSI1PK = ENTITY#TASK, GSI1SK = TASK#<taskId> (lookup by id, list all)
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from ..errors import ConditionFailedError, ConflictError
from ..formatters import format_task, task_to_item
from ..schemas import Task
from ..services.store import GSI1, KeyValueStore
from ..utils.clock import isoformat, utcnow

logger = logging.getLogger(__name__)

ENTITY_PK = "ENTITY#TASK"
UPDATABLE_FIELDS = {
    "title",
    "description",
    "type",
    "dueDate",
    "questionIds",
    "timeLimitSec",
    "maxAttempts",
    "isPublished",
    "isLocked",
}


def task_key(course_uid: str, task_id: str) -> Tuple[str, str]:
    return f"COURSE#{course_uid}", f"TASK#{task_id}"


class TaskRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def create(self, task: Task) -> Task:
        now = isoformat(utcnow())
        task = task.model_copy(update={"created_at": task.created_at or now, "updated_at": now})
        pk, sk = task_key(task.course_uid, task.task_id)
        try:
            await self.store.put(
                {
                    "PK": pk,
                    "SK": sk,
                    "GSI1PK": ENTITY_PK,
                    "GSI1SK": sk,
                    "entityType": "TASK",
                    **task_to_item(task),
                },
                condition=Attr("PK").not_exists(),
            )
        except ConditionFailedError as e:
            raise ConflictError(f"Task {task.task_id} already exists") from e
        logger.info(f"Created task {task.task_id} in course {task.course_id}")
        return task

    async def find(self, course_uid: str, task_id: str) -> Optional[Task]:
        if not course_uid or not task_id:
            return None
        return format_task(await self.store.get(*task_key(course_uid, task_id)))

    async def find_by_id(self, task_id: str) -> Optional[Task]:
        if not task_id:
            return None
        items = await self.store.query(ENTITY_PK, f"TASK#{task_id}", index=GSI1)
        # begins_with also matches longer ids sharing the prefix
        for item in items:
            if item.get("taskId") == task_id:
                return format_task(item)
        return None

    async def find_by_course(self, course_uid: str) -> List[Task]:
        items = await self.store.query(f"COURSE#{course_uid}", "TASK#")
        return [format_task(i) for i in items]

    async def find_all(self) -> List[Task]:
        items = await self.store.query(ENTITY_PK, "TASK#", index=GSI1)
        return [format_task(i) for i in items]

    async def find_by_creator(self, user_id: str) -> List[Task]:
        return [t for t in await self.find_all() if t.created_by == user_id]

    async def update(
        self,
        course_uid: str,
        task_id: str,
        updates: Mapping[str, Any],
        *,
        expected_updated_at: Optional[str] = None,
    ) -> Optional[Task]:
        """
        Apply a partial update (camelCase attribute names).

        ``None`` values clear nullable attributes (``dueDate``,
        ``timeLimitSec``). When ``expected_updated_at`` is given the write only
        succeeds if the row has not changed since it was read.

        Returns:
            The updated task, or ``None`` if it does not exist.

        Raises:
            ConflictError: If the row changed after ``expected_updated_at``.
        """
        fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        pk, sk = task_key(course_uid, task_id)
        if not fields:
            return await self.find(course_uid, task_id)

        condition = Attr("PK").exists()
        if expected_updated_at is not None:
            condition = condition & Attr("updatedAt").eq(expected_updated_at)
        try:
            item = await self.store.update(
                pk, sk, {**fields, "updatedAt": isoformat(utcnow())}, condition=condition
            )
        except ConditionFailedError as e:
            if expected_updated_at is not None and await self.store.get(pk, sk) is not None:
                raise ConflictError("Task was modified concurrently, please retry") from e
            return None
        return format_task(item)

    async def remove(self, course_uid: str, task_id: str) -> Optional[Task]:
        old = format_task(await self.store.delete(*task_key(course_uid, task_id)))
        if old is not None:
            logger.info(f"Removed task {task_id} from course {old.course_id}")
        return old
