"""User administration endpoints (Admin and Manager only)."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from taskmanager.core.types import Role, UserCreate, UserProfile, UserUpdate
from taskmanager.dependencies import ActorDep, ManagerDep

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=list[UserProfile])
async def list_users(
    actor: ActorDep, manager: ManagerDep, role: Role | None = None
) -> list[UserProfile]:
    return await manager.users.list_users(actor, role=role)


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(user_id: int, actor: ActorDep, manager: ManagerDep) -> UserProfile:
    return await manager.users.get_user(actor, user_id)


@router.post("", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, actor: ActorDep, manager: ManagerDep) -> UserProfile:
    return await manager.users.create_user(actor, payload)


@router.put("/{user_id}", response_model=UserProfile)
async def update_user(
    user_id: int, payload: UserUpdate, actor: ActorDep, manager: ManagerDep
) -> UserProfile:
    return await manager.users.update_user(actor, user_id, payload)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, actor: ActorDep, manager: ManagerDep) -> Response:
    """Deactivate a user (soft delete)."""
    await manager.users.delete_user(actor, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
