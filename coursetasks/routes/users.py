from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from ..middleware.rbac import get_current_user, log_admin_operation, require_roles
from ..schemas import Role, User
from ..services.user_service import UserService
from ..utils.responses import success_response

router = APIRouter(prefix="/api/users")

require_admin = require_roles(Role.ADMIN)


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


@router.get("")
async def list_users(
    admin: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    found = await users.list_users()
    return success_response(found, count=len(found))


@router.post("")
async def create_user(
    payload: Any = Body(None),
    admin: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    created = await users.create(payload)
    log_admin_operation("create_user", admin, {"target_user_id": created.user_id, "role": created.role.value})
    return success_response(await users.public_view(created), "User created successfully", status_code=201)


@router.get("/me")
async def get_me(
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return success_response(await users.public_view(user))


@router.put("/me")
async def update_me(
    payload: Any = Body(None),
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return success_response(await users.update_profile(user, payload), "Profile updated successfully")


@router.put("/me/password")
async def change_password(
    payload: Any = Body(None),
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    await users.change_password(user, payload)
    return success_response(message="Password updated successfully")


@router.get("/my-students")
async def my_students(
    tutor: User = Depends(require_roles(Role.TUTOR)),
    users: UserService = Depends(get_user_service),
):
    result = await users.my_students(tutor)
    return success_response(result["courses"], totalStudents=result["totalStudents"])


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    await users.delete_user(admin, user_id)
    log_admin_operation("delete_user", admin, {"target_user_id": user_id})
    return success_response(message="User deleted successfully")


@router.put("/{user_id}/role")
async def update_role(
    user_id: str,
    payload: Any = Body(None),
    admin: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    updated = await users.update_role(admin, user_id, payload)
    log_admin_operation("update_role", admin, {"target_user_id": user_id, "role": updated["role"]})
    return success_response(updated, "User role updated successfully")
