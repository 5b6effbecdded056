"""User management: list, read, create, update and soft-delete."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from taskmanager.core.exceptions import ConflictError
from taskmanager.core.types import Role, User
from taskmanager.policy import Action, Ownership, ResourceKind, enforce
from taskmanager.utils.security import hash_password

if TYPE_CHECKING:
    from taskmanager.core.types import Actor, UserCreate, UserProfile, UserUpdate
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)


class UserService:
    """Admin and Manager facing user administration.

    A Manager only ever sees and acts on users whose role is ``User``.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def list_users(self, actor: Actor, role: Role | None = None) -> list[UserProfile]:
        """List users ordered by first and last name.

        The *role* filter is honoured for Admins only; Managers always get
        role ``User``.
        """
        enforce(actor, ResourceKind.USER, Action.LIST)
        if actor.role == Role.MANAGER:
            roles = [Role.USER]
        else:
            roles = [role] if role is not None else None
        users = await self.repository.list_users(roles=roles)
        logger.debug("Listed %d users for actor %s", len(users), actor.id)
        return [u.to_profile() for u in users]

    async def get_user(self, actor: Actor, user_id: int) -> UserProfile:
        user = await self.repository.get_user(user_id)
        enforce(
            actor,
            ResourceKind.USER,
            Action.READ,
            Ownership(target_id=user.id, target_role=user.role),
        )
        return user.to_profile()

    async def create_user(self, actor: Actor, payload: UserCreate) -> UserProfile:
        """Create a user.

        Raises:
            InvalidOperationError: When creating an Admin
            ForbiddenError: When a Manager creates a non-User role
            ConflictError: When the username or email is taken
        """
        enforce(actor, ResourceKind.USER, Action.CREATE, Ownership(requested_role=payload.role))

        if await self.repository.find_user_by_username(payload.username) is not None:
            raise ConflictError("username", payload.username)
        if await self.repository.find_user_by_email(payload.email) is not None:
            raise ConflictError("email", payload.email)

        user = User(
            username=payload.username,
            email=payload.email,
            password_hash=hash_password(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            role=payload.role,
            created_by=actor.id,
        )
        created = await self.repository.create_user(user)
        logger.info("User %s created user %s (%s)", actor.id, created.id, created.role.value)
        return created.to_profile()

    async def update_user(self, actor: Actor, user_id: int, payload: UserUpdate) -> UserProfile:
        """Apply a partial update.

        A blank password leaves the stored hash unchanged.
        """
        user = await self.repository.get_user(user_id)
        enforce(
            actor,
            ResourceKind.USER,
            Action.UPDATE,
            Ownership(target_id=user.id, target_role=user.role, requested_role=payload.role),
        )

        if payload.username is not None and payload.username != user.username:
            if await self.repository.find_user_by_username(payload.username) is not None:
                raise ConflictError("username", payload.username)
        if payload.email is not None and payload.email != user.email:
            if await self.repository.find_user_by_email(payload.email) is not None:
                raise ConflictError("email", payload.email)

        changes = payload.model_dump(
            exclude_unset=True, exclude_none=True, exclude={"password"}
        )
        if payload.password is not None:
            changes["password_hash"] = hash_password(payload.password)

        updated = await self.repository.update_user(user.model_copy(update=changes))
        logger.info("User %s updated user %s", actor.id, user_id)
        return updated.to_profile()

    async def delete_user(self, actor: Actor, user_id: int) -> None:
        """Soft-delete: the user is deactivated, never removed."""
        user = await self.repository.get_user(user_id)
        enforce(
            actor,
            ResourceKind.USER,
            Action.DELETE,
            Ownership(target_id=user.id, target_role=user.role),
        )
        if not user.is_active:
            return
        await self.repository.update_user(user.model_copy(update={"is_active": False}))
        logger.info("User %s deactivated user %s", actor.id, user_id)


__all__ = ["UserService"]
