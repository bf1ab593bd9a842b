"""
Course repository.

PK = COURSE#<courseUid>
SK = COURSE#<courseUid>
GSI1PK = ENTITY#COURSE (list all courses)

The human-assigned ``courseId`` is unique: a claim item
(PK = SK = COURSEID#<courseId>) maps it to the surrogate ``courseUid`` and is
written with ``attribute_not_exists(PK)`` before the course row.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from ..errors import ConditionFailedError, ConflictError
from ..formatters import course_to_item, format_course
from ..schemas import Course
from ..services.store import GSI1, KeyValueStore
from ..utils.clock import isoformat, utcnow
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

ENTITY_PK = "ENTITY#COURSE"
UPDATABLE_FIELDS = {
    "title",
    "description",
    "instructor",
    "instructorId",
    "courseTag",
    "videoURL",
    "videoKey",
    "thumbnailUrl",
    "thumbnailKey",
    "isHidden",
}


def course_key(course_uid: str) -> Tuple[str, str]:
    return f"COURSE#{course_uid}", f"COURSE#{course_uid}"


def course_id_key(course_id: str) -> Tuple[str, str]:
    return f"COURSEID#{course_id}", f"COURSEID#{course_id}"


class CourseRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def create(
        self,
        *,
        course_id: str,
        title: str,
        description: str = "",
        instructor: str = "",
        instructor_id: str = "",
        course_tag: str = "",
        video_url: str = "",
        video_key: str = "",
        thumbnail_url: str = "",
        thumbnail_key: str = "",
        is_hidden: bool = False,
    ) -> Course:
        """
        Create a course.

        Raises:
            ConflictError: If a course with the same ``course_id`` exists. The
                existing course is left untouched.
        """
        course_uid = generate_id()
        claim_pk, claim_sk = course_id_key(course_id)
        try:
            await self.store.put(
                {"PK": claim_pk, "SK": claim_sk, "entityType": "COURSEID", "courseUid": course_uid},
                condition=Attr("PK").not_exists(),
            )
        except ConditionFailedError as e:
            raise ConflictError(f"Course with courseId '{course_id}' already exists") from e

        now = isoformat(utcnow())
        course = Course(
            course_uid=course_uid,
            course_id=course_id,
            title=title,
            description=description,
            instructor=instructor,
            instructor_id=instructor_id,
            course_tag=course_tag,
            students=[],
            video_url=video_url,
            video_key=video_key,
            thumbnail_url=thumbnail_url,
            thumbnail_key=thumbnail_key,
            is_hidden=is_hidden,
            created_at=now,
            updated_at=now,
        )
        pk, sk = course_key(course_uid)
        try:
            await self.store.put(
                {"PK": pk, "SK": sk, "GSI1PK": ENTITY_PK, "GSI1SK": pk, "entityType": "COURSE", **course_to_item(course)},
                condition=Attr("PK").not_exists(),
            )
        except Exception:
            await self.store.delete(claim_pk, claim_sk)
            raise

        logger.info(f"Created course {course_id} ({course_uid})")
        return course

    async def find_by_uid(self, course_uid: str) -> Optional[Course]:
        if not course_uid:
            return None
        return format_course(await self.store.get(*course_key(course_uid)))

    async def find_by_course_id(self, course_id: str) -> Optional[Course]:
        if not course_id:
            return None
        claim = await self.store.get(*course_id_key(course_id))
        if not claim:
            return None
        return await self.find_by_uid(claim["courseUid"])

    async def find_all(self) -> List[Course]:
        items = await self.store.query(ENTITY_PK, "COURSE#", index=GSI1)
        return [format_course(i) for i in items]

    async def _update(self, course_uid: str, fields: Mapping[str, Any]) -> Optional[Course]:
        try:
            item = await self.store.update(
                *course_key(course_uid),
                {**fields, "updatedAt": isoformat(utcnow())},
                condition=Attr("PK").exists(),
            )
        except ConditionFailedError:
            return None
        return format_course(item)

    async def update(self, course_uid: str, updates: Mapping[str, Any]) -> Optional[Course]:
        """Apply a partial update (camelCase names); ``None`` if the course is absent."""
        fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not fields:
            return await self.find_by_uid(course_uid)
        return await self._update(course_uid, fields)

    async def set_students(self, course_uid: str, student_ids: Iterable[str]) -> Optional[Course]:
        return await self._update(course_uid, {"students": list(dict.fromkeys(student_ids))})

    async def remove(self, course_uid: str) -> Optional[Course]:
        old = format_course(await self.store.delete(*course_key(course_uid)))
        if old is not None:
            await self.store.delete(*course_id_key(old.course_id))
            logger.info(f"Removed course {old.course_id} ({course_uid})")
        return old
