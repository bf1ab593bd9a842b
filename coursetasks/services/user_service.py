"""
User profile and administration operations.

Avatar images live in S3; responses carry a short-lived signed read URL in
``profileImage`` when ``S3_BUCKET_NAME`` is configured. Signing is
best-effort: on failure the user is returned with the stored value.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..aws_clients import s3_client
from ..errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from ..repositories import CourseRepository, UserRepository
from ..schemas import PasswordChange, ProfileUpdate, Role, RoleUpdate, User, UserCreate, parse_payload

logger = logging.getLogger(__name__)

S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME")
AVATAR_URL_EXPIRES_IN = 60 * 60
ASSIGNABLE_ROLES = (Role.TUTOR, Role.LEARNER)
INVALID_ROLE_MESSAGE = 'Invalid role. Must be either "tutor" or "learner"'

AvatarSigner = Callable[[str], str]


def s3_avatar_signer(bucket: str) -> AvatarSigner:
    def sign(key: str) -> str:
        return s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key, "ResponseContentType": "image/*"},
            ExpiresIn=AVATAR_URL_EXPIRES_IN,
        )

    return sign


class UserService:
    def __init__(
        self,
        users: UserRepository,
        courses: CourseRepository,
        avatar_signer: Optional[AvatarSigner] = None,
    ):
        self.users = users
        self.courses = courses
        if avatar_signer is None and S3_BUCKET_NAME:
            avatar_signer = s3_avatar_signer(S3_BUCKET_NAME)
        self.avatar_signer = avatar_signer

    async def public_view(self, user: User) -> Dict[str, Any]:
        data = user.dump()
        if not self.avatar_signer or not user.profile_image_key:
            return data
        try:
            data["profileImage"] = await asyncio.to_thread(self.avatar_signer, user.profile_image_key)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not sign avatar {user.profile_image_key} for user {user.user_id}: {e}")
        except Exception as e:
            logger.warning(
                f"Avatar signer failed for user {user.user_id}: {type(e).__name__}: {e}"
            )
        return data

    async def _require(self, user_id: str) -> User:
        user = await self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def create(self, payload: Any) -> User:
        data = parse_payload(UserCreate, payload)
        return await self.users.create(
            user_name=data.user_name, email=data.email, password=data.password, role=data.role
        )

    async def update_profile(self, user: User, payload: Any) -> Dict[str, Any]:
        data = parse_payload(ProfileUpdate, payload)
        updates = data.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
        if not updates:
            raise ValidationError("No valid fields to update")
        updated = await self.users.update_profile(user.user_id, updates)
        if updated is None:
            raise NotFoundError("User not found")
        return await self.public_view(updated)

    async def change_password(self, user: User, payload: Any) -> None:
        data = parse_payload(PasswordChange, payload)
        if not await self.users.match_password(user, data.current_password):
            raise UnauthorizedError("Current password is incorrect")
        if await self.users.update_password(user.user_id, data.new_password) is None:
            raise NotFoundError("User not found")
        logger.info(f"Password changed for user {user.user_id}")

    async def list_users(self) -> List[Dict[str, Any]]:
        users = await self.users.find_all()
        return list(await asyncio.gather(*(self.public_view(u) for u in users)))

    async def delete_user(self, actor: User, user_id: str) -> User:
        if user_id == actor.user_id:
            raise ValidationError("Cannot delete your own account")
        target = await self._require(user_id)
        if target.is_admin:
            raise ForbiddenError("Cannot delete admin users")
        removed = await self.users.remove(user_id)
        if removed is None:
            raise NotFoundError("User not found")
        logger.info(f"Admin {actor.user_id} deleted user {user_id}")
        return removed

    async def update_role(self, actor: User, user_id: str, payload: Any) -> Dict[str, Any]:
        try:
            data = parse_payload(RoleUpdate, payload)
        except ValidationError as e:
            raise ValidationError(INVALID_ROLE_MESSAGE) from e
        if data.role not in ASSIGNABLE_ROLES:
            raise ValidationError(INVALID_ROLE_MESSAGE)
        if user_id == actor.user_id:
            raise ValidationError("Cannot change your own role")
        target = await self._require(user_id)
        if target.is_admin:
            raise ForbiddenError("Cannot change admin role")
        updated = await self.users.update_role(user_id, data.role)
        if updated is None:
            raise NotFoundError("User not found")
        logger.info(f"Admin {actor.user_id} set role of {user_id} to {data.role.value}")
        return await self.public_view(updated)

    async def my_students(self, tutor: User) -> Dict[str, Any]:
        """Students of the tutor's courses, grouped by course."""
        name = (tutor.user_name or "").lower()
        courses = [
            c
            for c in await self.courses.find_all()
            if (c.instructor_id and c.instructor_id == tutor.user_id)
            or (name and c.instructor.lower() == name)
        ]
        student_ids = list(dict.fromkeys(s for c in courses for s in c.students))
        students = {u.user_id: u for u in await self.users.find_by_ids(student_ids)}
        views = {uid: await self.public_view(u) for uid, u in students.items()}

        grouped = []
        for course in courses:
            members = [
                {
                    "userId": sid,
                    "userName": views[sid]["userName"],
                    "email": views[sid]["email"],
                    "profileImage": views[sid]["profileImage"] or None,
                    "enrolledAt": views[sid]["createdAt"],
                }
                for sid in course.students
                if sid in views
            ]
            grouped.append(
                {
                    "courseId": course.course_id,
                    "courseTitle": course.title,
                    "students": members,
                    "studentCount": len(members),
                }
            )
        return {"courses": grouped, "totalStudents": len(student_ids)}
