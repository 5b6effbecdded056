"""In-memory repository implementation for testing and development.

WARNING: This implementation stores data in memory only. All data is lost
when the process restarts. Use ONLY for testing and development.

Every method does its checks and writes without awaiting in between, so each
call is atomic with respect to other coroutines on the same event loop.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any

from taskmanager.core.exceptions import ConflictError, NotFoundError
from taskmanager.core.types import ProjectUser, utcnow
from taskmanager.storage.repository import Repository

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from taskmanager.core.types import (
        Project,
        RefreshToken,
        Role,
        TaskHistory,
        TaskItem,
        TaskStatus,
        User,
    )

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository):
    """In-memory repository for testing and development.

    Entities live in plain dictionaries keyed by id; ids come from one
    counter per entity kind.

    DO NOT USE IN PRODUCTION - all data is lost on restart!

    Example:
        ```python
        repo = InMemoryRepository()
        user = await repo.create_user(User(username="alice", ...))
        assert (await repo.get_user(user.id)).username == "alice"

        # Cleanup (for testing)
        repo.clear()
        ```
    """

    def __init__(self) -> None:
        self._users: dict[int, User] = {}
        self._projects: dict[int, Project] = {}
        self._members: dict[int, ProjectUser] = {}
        self._tasks: dict[int, TaskItem] = {}
        self._history: dict[int, TaskHistory] = {}
        self._tokens: dict[int, RefreshToken] = {}
        self._token_index: dict[str, int] = {}
        self._ids: dict[str, itertools.count[int]] = {}
        logger.info("Initialized in-memory repository")

    def _next_id(self, kind: str) -> int:
        return next(self._ids.setdefault(kind, itertools.count(1)))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> User:
        if user_id not in self._users:
            raise NotFoundError("User", user_id)
        return self._users[user_id]

    async def find_user_by_username(self, username: str) -> User | None:
        return next((u for u in self._users.values() if u.username == username), None)

    async def find_user_by_email(self, email: str) -> User | None:
        return next((u for u in self._users.values() if u.email == email), None)

    async def list_users(
        self,
        roles: Iterable[Role] | None = None,
        active_only: bool = False,
    ) -> list[User]:
        users = list(self._users.values())
        if roles is not None:
            wanted = set(roles)
            users = [u for u in users if u.role in wanted]
        if active_only:
            users = [u for u in users if u.is_active]
        users.sort(key=lambda u: (u.first_name, u.last_name))
        logger.debug("Listed %d users", len(users))
        return users

    def _check_user_unique(self, user: User) -> None:
        for other in self._users.values():
            if other.id == user.id:
                continue
            if other.username == user.username:
                raise ConflictError("username", user.username)
            if other.email == user.email:
                raise ConflictError("email", user.email)

    async def create_user(self, user: User) -> User:
        self._check_user_unique(user.model_copy(update={"id": None}))
        created = user.model_copy(update={"id": self._next_id("user")})
        self._users[created.id] = created  # type: ignore[index]
        logger.info("Created user: %s (%s)", created.id, created.username)
        return created

    async def update_user(self, user: User) -> User:
        if user.id not in self._users:
            raise NotFoundError("User", user.id)
        self._check_user_unique(user)
        updated = user.model_copy(update={"updated_at": utcnow()})
        self._users[user.id] = updated
        logger.info("Updated user: %s", user.id)
        return updated

    async def count_users(self) -> int:
        return len(self._users)

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, User]:
        return {uid: self._users[uid] for uid in set(user_ids) if uid in self._users}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def get_project(self, project_id: int) -> Project:
        if project_id not in self._projects:
            raise NotFoundError("Project", project_id)
        return self._projects[project_id]

    async def list_projects(
        self,
        manager_id: int | None = None,
        member_id: int | None = None,
        project_ids: Iterable[int] | None = None,
    ) -> list[Project]:
        projects = list(self._projects.values())
        if manager_id is not None:
            projects = [p for p in projects if p.manager_id == manager_id]
        if member_id is not None:
            joined = {m.project_id for m in self._members.values() if m.user_id == member_id}
            projects = [p for p in projects if p.id in joined]
        if project_ids is not None:
            wanted = set(project_ids)
            projects = [p for p in projects if p.id in wanted]
        projects.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        return projects

    async def create_project(self, project: Project) -> Project:
        created = project.model_copy(update={"id": self._next_id("project")})
        self._projects[created.id] = created  # type: ignore[index]
        logger.info("Created project: %s (%s)", created.id, created.name)
        return created

    async def update_project(self, project: Project) -> Project:
        if project.id not in self._projects:
            raise NotFoundError("Project", project.id)
        updated = project.model_copy(update={"updated_at": utcnow()})
        self._projects[project.id] = updated
        logger.info("Updated project: %s", project.id)
        return updated

    async def delete_project(self, project_id: int) -> None:
        if project_id not in self._projects:
            raise NotFoundError("Project", project_id)

        task_ids = {t.id for t in self._tasks.values() if t.project_id == project_id}
        for hid in [h.id for h in self._history.values() if h.task_id in task_ids]:
            del self._history[hid]  # type: ignore[arg-type]
        for tid in task_ids:
            del self._tasks[tid]  # type: ignore[arg-type]
        for mid in [m.id for m in self._members.values() if m.project_id == project_id]:
            del self._members[mid]  # type: ignore[arg-type]
        del self._projects[project_id]

        logger.info("Deleted project %s with %d tasks", project_id, len(task_ids))

    async def list_memberships(
        self,
        project_ids: Iterable[int] | None = None,
        user_id: int | None = None,
    ) -> list[ProjectUser]:
        members = list(self._members.values())
        if project_ids is not None:
            wanted = set(project_ids)
            members = [m for m in members if m.project_id in wanted]
        if user_id is not None:
            members = [m for m in members if m.user_id == user_id]
        return members

    async def replace_project_members(
        self,
        project_id: int,
        user_ids: Sequence[int],
    ) -> list[ProjectUser]:
        if project_id not in self._projects:
            raise NotFoundError("Project", project_id)

        for mid in [m.id for m in self._members.values() if m.project_id == project_id]:
            del self._members[mid]  # type: ignore[arg-type]

        created: list[ProjectUser] = []
        for user_id in dict.fromkeys(user_ids):
            member = ProjectUser(
                id=self._next_id("member"), project_id=project_id, user_id=user_id
            )
            self._members[member.id] = member  # type: ignore[index]
            created.append(member)

        logger.info("Replaced members of project %s (%d users)", project_id, len(created))
        return created

    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        return any(
            m.project_id == project_id and m.user_id == user_id for m in self._members.values()
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_task(self, task_id: int) -> TaskItem:
        if task_id not in self._tasks:
            raise NotFoundError("Task", task_id)
        return self._tasks[task_id]

    async def list_tasks(
        self,
        project_ids: Iterable[int] | None = None,
        project_id: int | None = None,
        status: TaskStatus | None = None,
        assigned_to_id: int | None = None,
    ) -> list[TaskItem]:
        tasks = list(self._tasks.values())
        if project_ids is not None:
            wanted = set(project_ids)
            tasks = [t for t in tasks if t.project_id in wanted]
        if project_id is not None:
            tasks = [t for t in tasks if t.project_id == project_id]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        if assigned_to_id is not None:
            tasks = [t for t in tasks if t.assigned_to_id == assigned_to_id]
        tasks.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return tasks

    def _append_history(self, task_id: int, history: Sequence[TaskHistory]) -> None:
        for row in history:
            hid = self._next_id("history")
            self._history[hid] = row.model_copy(update={"id": hid, "task_id": task_id})

    async def create_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        if task.project_id not in self._projects:
            raise NotFoundError("Project", task.project_id)
        created = task.model_copy(update={"id": self._next_id("task")})
        self._tasks[created.id] = created  # type: ignore[index]
        self._append_history(created.id, history)  # type: ignore[arg-type]
        logger.info("Created task: %s in project %s", created.id, created.project_id)
        return created

    async def update_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        if task.id not in self._tasks:
            raise NotFoundError("Task", task.id)
        updated = task.model_copy(update={"updated_at": utcnow()})
        self._tasks[task.id] = updated
        self._append_history(task.id, history)
        logger.info("Updated task: %s (%d history rows)", task.id, len(history))
        return updated

    async def delete_task(self, task_id: int) -> None:
        if task_id not in self._tasks:
            raise NotFoundError("Task", task_id)
        for hid in [h.id for h in self._history.values() if h.task_id == task_id]:
            del self._history[hid]  # type: ignore[arg-type]
        del self._tasks[task_id]
        logger.info("Deleted task: %s", task_id)

    async def list_task_history(self, task_id: int) -> list[TaskHistory]:
        rows = [h for h in self._history.values() if h.task_id == task_id]
        rows.sort(key=lambda h: (h.changed_at, h.id))
        return rows

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def add_refresh_token(self, token: RefreshToken) -> RefreshToken:
        if token.token in self._token_index:
            raise ConflictError("refresh token", "***")
        stored = token.model_copy(update={"id": self._next_id("token")})
        self._tokens[stored.id] = stored  # type: ignore[index]
        self._token_index[stored.token] = stored.id  # type: ignore[assignment]
        return stored

    async def find_refresh_token(self, token: str) -> RefreshToken | None:
        token_id = self._token_index.get(token)
        return self._tokens[token_id] if token_id is not None else None

    async def rotate_refresh_token(
        self,
        old_token: str,
        new_token: RefreshToken,
        revoked_at: datetime,
    ) -> RefreshToken | None:
        old_id = self._token_index.get(old_token)
        if old_id is None or not self._tokens[old_id].is_active(revoked_at):
            return None
        if new_token.token in self._token_index:
            raise ConflictError("refresh token", "***")

        self._tokens[old_id] = self._tokens[old_id].model_copy(
            update={"is_revoked": True, "revoked_at": revoked_at}
        )
        stored = new_token.model_copy(update={"id": self._next_id("token")})
        self._tokens[stored.id] = stored  # type: ignore[index]
        self._token_index[stored.token] = stored.id  # type: ignore[assignment]
        logger.info("Rotated refresh token for user %s", stored.user_id)
        return stored

    async def revoke_refresh_token(self, token: str, revoked_at: datetime) -> bool:
        token_id = self._token_index.get(token)
        if token_id is None:
            return False
        current = self._tokens[token_id]
        if not current.is_revoked:
            self._tokens[token_id] = current.model_copy(
                update={"is_revoked": True, "revoked_at": revoked_at}
            )
        return True

    async def revoke_user_refresh_tokens(self, user_id: int, revoked_at: datetime) -> int:
        count = 0
        for token_id, token in self._tokens.items():
            if token.user_id == user_id and not token.is_revoked:
                self._tokens[token_id] = token.model_copy(
                    update={"is_revoked": True, "revoked_at": revoked_at}
                )
                count += 1
        logger.info("Revoked %d refresh tokens of user %s", count, user_id)
        return count

    async def list_refresh_tokens(self, user_id: int) -> list[RefreshToken]:
        tokens = [t for t in self._tokens.values() if t.user_id == user_id]
        tokens.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return tokens

    # ------------------------------------------------------------------
    # Testing
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Remove every entity (for testing)."""
        self._users.clear()
        self._projects.clear()
        self._members.clear()
        self._tasks.clear()
        self._history.clear()
        self._tokens.clear()
        self._token_index.clear()
        self._ids.clear()
        logger.info("Cleared in-memory repository")

    def get_statistics(self) -> dict[str, Any]:
        """Entity counts (for monitoring and tests)."""
        return {
            "users": len(self._users),
            "projects": len(self._projects),
            "memberships": len(self._members),
            "tasks": len(self._tasks),
            "history": len(self._history),
            "refresh_tokens": len(self._tokens),
        }


__all__ = ["InMemoryRepository"]
