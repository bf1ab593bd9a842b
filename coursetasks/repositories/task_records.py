"""
TaskRecord repository: one row per (user, task) holding the attempt state.

PK = USER#<userId>
SK = TASKRECORD#<taskId>
GSI1PK = TASK#<taskId>, GSI1SK = USER#<userId> (all records of a task)

Rows are only ever written through ``upsert`` so a second row for the same
pair cannot exist.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import ConditionBase

from ..formatters import format_task_record
from ..schemas import TaskRecord
from ..services.store import GSI1, KeyValueStore
from ..utils.clock import isoformat, utcnow

logger = logging.getLogger(__name__)


def task_record_key(user_id: str, task_id: str) -> Tuple[str, str]:
    return f"USER#{user_id}", f"TASKRECORD#{task_id}"


class TaskRecordRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def find(self, user_id: str, task_id: str) -> Optional[TaskRecord]:
        if not user_id or not task_id:
            return None
        return format_task_record(await self.store.get(*task_record_key(user_id, task_id)))

    async def find_by_task(self, task_id: str) -> List[TaskRecord]:
        items = await self.store.query(f"TASK#{task_id}", "USER#", index=GSI1)
        return [format_task_record(i) for i in items]

    async def find_by_user(self, user_id: str) -> List[TaskRecord]:
        items = await self.store.query(f"USER#{user_id}", "TASKRECORD#")
        return [format_task_record(i) for i in items]

    async def upsert(
        self,
        user_id: str,
        task_id: str,
        patch: Mapping[str, Any],
        *,
        condition: Optional[ConditionBase] = None,
    ) -> TaskRecord:
        """
        Set the attributes in ``patch`` (camelCase) on the record, creating it
        when absent.

        Identity and index attributes are only written the first time the
        record is created. A ``None`` value stores null.

        Raises:
            ConditionFailedError: If ``condition`` does not hold.
        """
        pk, _ = task_record_key(user_id, task_id)
        now = isoformat(utcnow())
        defaults: Dict[str, Any] = {
            "GSI1PK": f"TASK#{task_id}",
            "GSI1SK": pk,
            "entityType": "TASKRECORD",
            "userId": user_id,
            "taskId": task_id,
            "createdAt": now,
        }
        fields = {**patch, "updatedAt": now}
        # An attribute may appear only once in an update expression
        for name in fields:
            defaults.pop(name, None)

        item = await self.store.update(
            *task_record_key(user_id, task_id), fields, defaults=defaults, condition=condition
        )
        return format_task_record(item)
