"""
User repository.

PK = USER#<userId>
SK = USER#<userId>
GSI1PK = ENTITY#USER (list all users)

Email uniqueness is held by a claim item (PK = SK = EMAIL#<lower email>)
written with ``attribute_not_exists(PK)`` before the user row.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from ..errors import ConditionFailedError, ConflictError
from ..formatters import format_user, user_to_item
from ..schemas import Role, User
from ..services.auth_service import hash_password, verify_password
from ..services.store import GSI1, KeyValueStore
from ..utils.clock import isoformat, utcnow
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

ENTITY_PK = "ENTITY#USER"
PROFILE_FIELDS = {"userName", "email", "profileImage", "profileImageKey"}


def user_key(user_id: str) -> Tuple[str, str]:
    return f"USER#{user_id}", f"USER#{user_id}"


def email_key(email: str) -> Tuple[str, str]:
    normalized = email.strip().lower()
    return f"EMAIL#{normalized}", f"EMAIL#{normalized}"


class UserRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _claim_email(self, email: str, user_id: str) -> None:
        pk, sk = email_key(email)
        try:
            await self.store.put(
                {"PK": pk, "SK": sk, "entityType": "EMAIL", "userId": user_id, "email": email},
                condition=Attr("PK").not_exists(),
            )
        except ConditionFailedError as e:
            raise ConflictError("User already exists with this email") from e

    async def _release_email(self, email: str) -> None:
        pk, sk = email_key(email)
        await self.store.delete(pk, sk)

    async def create(
        self,
        *,
        user_name: str,
        email: str,
        password: str,
        role: Role = Role.LEARNER,
        profile_image: str = "",
        profile_image_key: str = "",
        enrolled_courses: Optional[List[str]] = None,
    ) -> User:
        user_id = generate_id()
        email = email.strip().lower()
        now = isoformat(utcnow())

        await self._claim_email(email, user_id)

        user = User(
            user_id=user_id,
            user_name=user_name,
            email=email,
            password=await asyncio.to_thread(hash_password, password),
            role=role,
            profile_image=profile_image,
            profile_image_key=profile_image_key,
            enrolled_courses=list(enrolled_courses or []),
            created_at=now,
            updated_at=now,
        )
        pk, sk = user_key(user_id)
        item = {
            "PK": pk,
            "SK": sk,
            "GSI1PK": ENTITY_PK,
            "GSI1SK": pk,
            "entityType": "USER",
            **user_to_item(user),
        }
        try:
            await self.store.put(item, condition=Attr("PK").not_exists())
        except Exception:
            await self._release_email(email)
            raise

        logger.info(f"Created user {user_id} with role {role.value}")
        return user

    async def find_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        pk, sk = user_key(user_id)
        return format_user(await self.store.get(pk, sk))

    async def find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        claim = await self.store.get(*email_key(email))
        if not claim:
            return None
        return await self.find_by_id(claim["userId"])

    async def email_exists(self, email: str) -> bool:
        return await self.store.get(*email_key(email)) is not None

    async def find_all(self) -> List[User]:
        items = await self.store.query(ENTITY_PK, "USER#", index=GSI1)
        return [format_user(i) for i in items]

    async def find_by_ids(self, user_ids: Iterable[str]) -> List[User]:
        unique = list(dict.fromkeys(i for i in user_ids if i))
        found = await asyncio.gather(*(self.find_by_id(i) for i in unique))
        return [u for u in found if u is not None]

    async def _update(self, user_id: str, fields: Mapping[str, Any]) -> Optional[User]:
        pk, sk = user_key(user_id)
        try:
            item = await self.store.update(
                pk,
                sk,
                {**fields, "updatedAt": isoformat(utcnow())},
                condition=Attr("PK").exists(),
            )
        except ConditionFailedError:
            return None
        return format_user(item)

    async def update_profile(self, user_id: str, updates: Mapping[str, Any]) -> Optional[User]:
        """Update profile attributes (camelCase names); returns ``None`` if the user is absent."""
        fields = {k: v for k, v in updates.items() if k in PROFILE_FIELDS and v is not None}
        existing = await self.find_by_id(user_id)
        if existing is None:
            return None

        new_email = fields.get("email")
        if new_email is not None:
            new_email = new_email.strip().lower()
            fields["email"] = new_email
            if new_email == existing.email:
                fields.pop("email")
            else:
                await self._claim_email(new_email, user_id)

        if not fields:
            return existing

        try:
            updated = await self._update(user_id, fields)
        except Exception:
            if "email" in fields:
                await self._release_email(fields["email"])
            raise

        if updated is None:
            # User vanished between read and write
            if "email" in fields:
                await self._release_email(fields["email"])
            return None

        if "email" in fields and existing.email:
            await self._release_email(existing.email)
        return updated

    async def update_password(self, user_id: str, new_password: str) -> Optional[User]:
        hashed = await asyncio.to_thread(hash_password, new_password)
        return await self._update(user_id, {"password": hashed})

    async def update_role(self, user_id: str, role: Role) -> Optional[User]:
        return await self._update(user_id, {"role": role.value})

    async def set_enrolled_courses(self, user_id: str, course_ids: Iterable[str]) -> Optional[User]:
        return await self._update(user_id, {"enrolledCourses": list(dict.fromkeys(course_ids))})

    async def remove(self, user_id: str) -> Optional[User]:
        pk, sk = user_key(user_id)
        old = format_user(await self.store.delete(pk, sk))
        if old is not None and old.email:
            await self._release_email(old.email)
        return old

    @staticmethod
    async def match_password(user: User, entered_password: str) -> bool:
        # bcrypt is CPU bound; keep it off the event loop
        return await asyncio.to_thread(verify_password, entered_password, user.password)
