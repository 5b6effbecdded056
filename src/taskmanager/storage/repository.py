"""Abstract repository interface for taskmanager persistence.

The repository owns every persisted entity (users, projects, memberships,
tasks, task history and refresh tokens).  Entities reference each other by id
only; services read what they need, build modified copies and hand them back.

Composite writes that must be atomic (task + history rows, membership
replacement, refresh-token rotation, project cascade) are single repository
methods so each backend can run them inside one transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from taskmanager.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from taskmanager.core.types import (
        Project,
        ProjectUser,
        RefreshToken,
        Role,
        TaskHistory,
        TaskItem,
        TaskStatus,
        User,
    )


class Repository(ABC):
    """Abstract base class for taskmanager storage implementations.

    Conventions shared by every implementation:

    - ``get_*`` lookups by id raise :class:`~taskmanager.core.exceptions.NotFoundError`.
    - ``find_*`` lookups return ``None`` when nothing matches.
    - Uniqueness violations raise :class:`~taskmanager.core.exceptions.ConflictError`.
    - Unexpected backend failures raise
      :class:`~taskmanager.core.exceptions.PersistenceError`.
    - ``create_*`` methods ignore the incoming ``id`` and return the entity
      with its repository-assigned id.

    Implementations:
    - SQLAlchemyRepository: Production persistent storage
    - InMemoryRepository: Testing and development

    Example:
        ```python
        repo = SQLAlchemyRepository(database_url="sqlite+aiosqlite:///./tm.db")
        await repo.initialize()

        user = await repo.create_user(User(username="alice", ...))
        fetched = await repo.get_user(user.id)

        updated = fetched.model_copy(update={"first_name": "Alicia"})
        await repo.update_user(updated)

        await repo.close()
        ```
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open pools).  Default: no-op."""

    async def close(self) -> None:
        """Release backend resources.  Default: no-op."""

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: int) -> User:
        """Get user by id, active or not.

        Raises:
            NotFoundError: If no user has this id
        """

    @abstractmethod
    async def find_user_by_username(self, username: str) -> User | None:
        """Return the user with this exact username, active or not."""

    @abstractmethod
    async def find_user_by_email(self, email: str) -> User | None:
        """Return the user with this exact email, active or not."""

    @abstractmethod
    async def list_users(
        self,
        roles: Iterable[Role] | None = None,
        active_only: bool = False,
    ) -> list[User]:
        """List users ordered by first name then last name.

        Args:
            roles: Only return users whose role is one of these
            active_only: Skip soft-deleted users
        """

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Insert a user.

        Raises:
            ConflictError: If the username or email is already taken
        """

    @abstractmethod
    async def update_user(self, user: User) -> User:
        """Replace the stored user with *user* (matched by id).

        Raises:
            NotFoundError: If the user does not exist
            ConflictError: If the new username or email is already taken
        """

    @abstractmethod
    async def count_users(self) -> int:
        """Count all users, including inactive ones."""

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, User]:
        """Get multiple users by id (batch operation).

        Default implementation calls :meth:`get_user` for each id and skips
        ids that don't exist.  Implementations should override for better
        performance.
        """
        users: dict[int, User] = {}
        for user_id in set(user_ids):
            try:
                users[user_id] = await self.get_user(user_id)
            except NotFoundError:
                continue
        return users

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_project(self, project_id: int) -> Project:
        """Get project by id.

        Raises:
            NotFoundError: If the project does not exist
        """

    @abstractmethod
    async def list_projects(
        self,
        manager_id: int | None = None,
        member_id: int | None = None,
        project_ids: Iterable[int] | None = None,
    ) -> list[Project]:
        """List projects newest first.

        All given filters are combined.

        Args:
            manager_id: Only projects managed by this user
            member_id: Only projects this user is a member of
            project_ids: Only projects with one of these ids
        """

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        """Insert a project."""

    @abstractmethod
    async def update_project(self, project: Project) -> Project:
        """Replace the stored project with *project* (matched by id).

        Raises:
            NotFoundError: If the project does not exist
        """

    @abstractmethod
    async def delete_project(self, project_id: int) -> None:
        """Delete a project together with its memberships, tasks and task history.

        Runs as one atomic unit.

        Raises:
            NotFoundError: If the project does not exist
        """

    @abstractmethod
    async def list_memberships(
        self,
        project_ids: Iterable[int] | None = None,
        user_id: int | None = None,
    ) -> list[ProjectUser]:
        """List membership rows, filtered by project ids and/or user id."""

    @abstractmethod
    async def replace_project_members(
        self,
        project_id: int,
        user_ids: Sequence[int],
    ) -> list[ProjectUser]:
        """Atomically replace the whole membership set of a project.

        The caller is responsible for only passing ids of existing users.
        Duplicate ids are collapsed.

        Raises:
            NotFoundError: If the project does not exist
        """

    @abstractmethod
    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        """Return True if *user_id* is a member of *project_id*."""

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_task(self, task_id: int) -> TaskItem:
        """Get task by id.

        Raises:
            NotFoundError: If the task does not exist
        """

    @abstractmethod
    async def list_tasks(
        self,
        project_ids: Iterable[int] | None = None,
        project_id: int | None = None,
        status: TaskStatus | None = None,
        assigned_to_id: int | None = None,
    ) -> list[TaskItem]:
        """List tasks newest first.  All given filters are combined."""

    @abstractmethod
    async def create_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        """Insert a task and its initial history rows in one transaction.

        The ``task_id`` of each history row is replaced with the new task id.

        Raises:
            NotFoundError: If the task's project does not exist
        """

    @abstractmethod
    async def update_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        """Replace the stored task and append *history* in one transaction.

        Raises:
            NotFoundError: If the task does not exist
        """

    @abstractmethod
    async def delete_task(self, task_id: int) -> None:
        """Delete a task and its history.

        Raises:
            NotFoundError: If the task does not exist
        """

    @abstractmethod
    async def list_task_history(self, task_id: int) -> list[TaskHistory]:
        """List the history rows of a task in the order they were written."""

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_refresh_token(self, token: RefreshToken) -> RefreshToken:
        """Persist a newly issued refresh token."""

    @abstractmethod
    async def find_refresh_token(self, token: str) -> RefreshToken | None:
        """Return the stored refresh token with this value, if any."""

    @abstractmethod
    async def rotate_refresh_token(
        self,
        old_token: str,
        new_token: RefreshToken,
        revoked_at: datetime,
    ) -> RefreshToken | None:
        """Revoke *old_token* and persist *new_token* in one transaction.

        The revoke only succeeds if *old_token* is still active at
        *revoked_at*.  When it isn't (unknown, already revoked or expired,
        e.g. a concurrent refresh won the race) nothing is written and
        ``None`` is returned.
        """

    @abstractmethod
    async def revoke_refresh_token(self, token: str, revoked_at: datetime) -> bool:
        """Revoke one refresh token.

        Revoking an already revoked token keeps its original ``revoked_at``.

        Returns:
            False if the token does not exist
        """

    @abstractmethod
    async def revoke_user_refresh_tokens(self, user_id: int, revoked_at: datetime) -> int:
        """Revoke every non-revoked refresh token of a user.

        Returns:
            Number of tokens revoked by this call
        """

    @abstractmethod
    async def list_refresh_tokens(self, user_id: int) -> list[RefreshToken]:
        """List every refresh token of a user, newest first."""


__all__ = ["Repository"]
