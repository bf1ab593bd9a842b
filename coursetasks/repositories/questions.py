"""
Question repository.

PK = TASK#<taskId>
SK = QUESTION#<questionId>
GSI1PK = ENTITY#QUESTION, GSI1SK = QUESTION#<questionId>
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from ..errors import ConditionFailedError, ConflictError
from ..formatters import format_question, question_to_item
from ..schemas import Difficulty, Question
from ..services.store import KeyValueStore
from ..utils.clock import isoformat, utcnow
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

ENTITY_PK = "ENTITY#QUESTION"
UPDATABLE_FIELDS = {"questionText", "options", "correctAnswer", "explanation", "difficulty"}


def question_key(task_id: str, question_id: str) -> Tuple[str, str]:
    return f"TASK#{task_id}", f"QUESTION#{question_id}"


class QuestionRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def create(
        self,
        task_id: str,
        *,
        question_text: str,
        options: List[Any],
        correct_answer: Any,
        explanation: str = "",
        difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> Question:
        now = isoformat(utcnow())
        question = Question(
            question_id=generate_id(),
            task_id=task_id,
            question_text=question_text,
            options=list(options),
            correct_answer=correct_answer,
            explanation=explanation,
            difficulty=difficulty,
            created_at=now,
            updated_at=now,
        )
        pk, sk = question_key(task_id, question.question_id)
        try:
            await self.store.put(
                {
                    "PK": pk,
                    "SK": sk,
                    "GSI1PK": ENTITY_PK,
                    "GSI1SK": sk,
                    "entityType": "QUESTION",
                    **question_to_item(question),
                },
                condition=Attr("PK").not_exists(),
            )
        except ConditionFailedError as e:
            raise ConflictError(f"Question {question.question_id} already exists") from e
        return question

    async def find(self, task_id: str, question_id: str) -> Optional[Question]:
        if not task_id or not question_id:
            return None
        return format_question(await self.store.get(*question_key(task_id, question_id)))

    async def find_by_task(self, task_id: str) -> List[Question]:
        items = await self.store.query(f"TASK#{task_id}", "QUESTION#")
        return [format_question(i) for i in items]

    async def update(self, task_id: str, question_id: str, updates: Mapping[str, Any]) -> Optional[Question]:
        fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not fields:
            return await self.find(task_id, question_id)
        try:
            item = await self.store.update(
                *question_key(task_id, question_id),
                {**fields, "updatedAt": isoformat(utcnow())},
                condition=Attr("PK").exists(),
            )
        except ConditionFailedError:
            return None
        return format_question(item)

    async def remove(self, task_id: str, question_id: str) -> Optional[Question]:
        return format_question(await self.store.delete(*question_key(task_id, question_id)))

    async def remove_by_task(self, task_id: str) -> int:
        """Delete every question stored under a task; returns how many were removed."""
        questions = await self.find_by_task(task_id)
        for question in questions:
            await self.store.delete(*question_key(task_id, question.question_id))
        if questions:
            logger.info(f"Removed {len(questions)} questions of task {task_id}")
        return len(questions)
