"""Task management with a field-level audit trail.

Every write that changes a tracked field (title, status, priority, assignee)
appends one :class:`~taskmanager.core.types.TaskHistory` row per changed
field, in the same repository transaction as the task write itself.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from taskmanager.core.exceptions import InvalidOperationError, NotFoundError
from taskmanager.core.types import (
    UNASSIGNED,
    HistoryField,
    Role,
    TaskDetail,
    TaskHistory,
    TaskHistoryView,
    TaskItem,
    TaskStatus,
    TaskView,
    utcnow,
)
from taskmanager.policy import Action, Ownership, ResourceKind, enforce

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from taskmanager.core.types import (
        Actor,
        Project,
        TaskCreate,
        TaskStatusUpdate,
        TaskUpdate,
        User,
    )
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)

TASK_CREATED = "Task created"

# Task fields a TaskUpdate payload may set
_UPDATABLE_FIELDS = (
    "title",
    "description",
    "assigned_to_id",
    "status",
    "priority",
    "estimated_hours",
    "start_date",
    "due_date",
)
# Fields that cannot be null on the entity; an explicit null leaves them unchanged
_NON_NULLABLE = frozenset({"title", "status", "priority"})


async def build_task_views(repository: Repository, tasks: Sequence[TaskItem]) -> list[TaskView]:
    """Decorate tasks with their project name and assignee/assigner profiles."""
    if not tasks:
        return []
    projects = {
        p.id: p
        for p in await repository.list_projects(project_ids={t.project_id for t in tasks})
    }
    user_ids = {t.assigned_by_id for t in tasks}
    user_ids.update(t.assigned_to_id for t in tasks if t.assigned_to_id is not None)
    users = await repository.get_users(user_ids)
    return [_task_view(t, projects.get(t.project_id), users) for t in tasks]


def _task_view(task: TaskItem, project: Project | None, users: dict[int, User]) -> TaskView:
    assigned_to = users.get(task.assigned_to_id) if task.assigned_to_id is not None else None
    assigned_by = users.get(task.assigned_by_id)
    return TaskView(
        **task.model_dump(),
        project_name=project.name if project else None,
        assigned_to=assigned_to.to_profile() if assigned_to else None,
        assigned_by=assigned_by.to_profile() if assigned_by else None,
    )


def diff_task(
    before: TaskItem,
    after: TaskItem,
    usernames: dict[int, str],
    changed_by_id: int,
    at: datetime,
) -> list[TaskHistory]:
    """Return one history row per tracked field that differs.

    The assignee is recorded by username, with ``"Unassigned"`` for null.
    """

    def username(user_id: int | None) -> str:
        if user_id is None:
            return UNASSIGNED
        return usernames.get(user_id, UNASSIGNED)

    pairs: list[tuple[HistoryField, str | None, str | None]] = []
    if before.title != after.title:
        pairs.append((HistoryField.TITLE, before.title, after.title))
    if before.status != after.status:
        pairs.append((HistoryField.STATUS, before.status.value, after.status.value))
    if before.priority != after.priority:
        pairs.append((HistoryField.PRIORITY, before.priority.value, after.priority.value))
    if before.assigned_to_id != after.assigned_to_id:
        pairs.append(
            (
                HistoryField.ASSIGNED_TO,
                username(before.assigned_to_id),
                username(after.assigned_to_id),
            )
        )

    return [
        TaskHistory(
            task_id=before.id or 0,
            changed_by_id=changed_by_id,
            field_name=field.value,
            old_value=old,
            new_value=new,
            changed_at=at,
        )
        for field, old, new in pairs
    ]


class TaskService:
    """Tasks as seen by each role.

    Admins see every task, Managers the tasks of projects they manage and
    Users only the tasks assigned to them.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def list_tasks(
        self,
        actor: Actor,
        project_id: int | None = None,
        status: TaskStatus | None = None,
        assigned_to_id: int | None = None,
    ) -> list[TaskView]:
        """List the tasks visible to *actor*, newest first, with optional filters."""
        enforce(actor, ResourceKind.TASK, Action.LIST)
        project_ids: list[int] | None = None

        if actor.role == Role.MANAGER:
            managed = await self.repository.list_projects(manager_id=actor.id)
            project_ids = [p.id for p in managed]  # type: ignore[misc]
        elif actor.role == Role.USER:
            if assigned_to_id is not None and assigned_to_id != actor.id:
                return []
            assigned_to_id = actor.id

        tasks = await self.repository.list_tasks(
            project_ids=project_ids,
            project_id=project_id,
            status=status,
            assigned_to_id=assigned_to_id,
        )
        logger.debug("Listed %d tasks for actor %s", len(tasks), actor.id)
        return await build_task_views(self.repository, tasks)

    async def get_task(self, actor: Actor, task_id: int) -> TaskDetail:
        """Return one task with its full history, oldest change first."""
        task, project = await self._load(actor, task_id, Action.READ)
        history = await self.repository.list_task_history(task_id)

        users = await self.repository.get_users(
            {h.changed_by_id for h in history}
            | {task.assigned_by_id}
            | ({task.assigned_to_id} if task.assigned_to_id is not None else set())
        )
        view = _task_view(task, project, users)
        return TaskDetail(
            **view.model_dump(),
            history=[
                TaskHistoryView(
                    id=h.id,
                    field_name=h.field_name,
                    old_value=h.old_value,
                    new_value=h.new_value,
                    comment=h.comment,
                    changed_at=h.changed_at,
                    changed_by=(
                        users[h.changed_by_id].to_profile() if h.changed_by_id in users else None
                    ),
                )
                for h in history
            ],
        )

    async def create_task(self, actor: Actor, payload: TaskCreate) -> TaskView:
        """Create a task in a project.

        The status is derived from the assignee; any status in the payload is
        ignored.  One ``Created`` history row is written with the task.

        Raises:
            InvalidOperationError: The project does not exist, or the assignee
                is not an active member of it
        """
        try:
            project = await self.repository.get_project(payload.project_id)
        except NotFoundError:
            raise InvalidOperationError(
                f"Project {payload.project_id} does not exist"
            ) from None
        enforce(actor, ResourceKind.TASK, Action.CREATE, Ownership(manager_id=project.manager_id))

        if payload.assigned_to_id is not None:
            await self._check_assignee(project.id, payload.assigned_to_id)  # type: ignore[arg-type]

        now = utcnow()
        task = TaskItem(
            title=payload.title,
            description=payload.description,
            project_id=project.id,  # type: ignore[arg-type]
            assigned_to_id=payload.assigned_to_id,
            assigned_by_id=actor.id,
            status=(
                TaskStatus.ASSIGNED if payload.assigned_to_id is not None
                else TaskStatus.NOT_ASSIGNED
            ),
            priority=payload.priority,
            estimated_hours=payload.estimated_hours,
            actual_hours=Decimal("0"),
            start_date=payload.start_date,
            due_date=payload.due_date,
            created_at=now,
            updated_at=now,
        )
        created_row = TaskHistory(
            task_id=0,
            changed_by_id=actor.id,
            field_name=HistoryField.CREATED.value,
            old_value=None,
            new_value=TASK_CREATED,
            changed_at=now,
        )
        created = await self.repository.create_task(task, [created_row])
        logger.info("User %s created task %s in project %s", actor.id, created.id, project.id)
        return (await build_task_views(self.repository, [created]))[0]

    async def update_task(self, actor: Actor, task_id: int, payload: TaskUpdate) -> TaskView:
        """Apply a partial update and record the tracked-field diff.

        When the assignee changes and the payload carries no status, a
        ``NotAssigned`` task becomes ``Assigned`` and an ``Assigned`` task
        whose assignee is cleared becomes ``NotAssigned``.
        """
        task, project = await self._load(actor, task_id, Action.UPDATE)

        changes: dict[str, Any] = {}
        for name in _UPDATABLE_FIELDS:
            if name not in payload.model_fields_set:
                continue
            value = getattr(payload, name)
            if value is None and name in _NON_NULLABLE:
                continue
            changes[name] = value

        new_assignee = changes.get("assigned_to_id", task.assigned_to_id)
        if new_assignee != task.assigned_to_id:
            if new_assignee is not None:
                await self._check_assignee(project.id, new_assignee)  # type: ignore[arg-type]
            if "status" not in changes:
                if new_assignee is not None and task.status == TaskStatus.NOT_ASSIGNED:
                    changes["status"] = TaskStatus.ASSIGNED
                elif new_assignee is None and task.status == TaskStatus.ASSIGNED:
                    changes["status"] = TaskStatus.NOT_ASSIGNED

        new_status = changes.get("status", task.status)
        if new_status.is_terminal and (new_status != task.status or task.completed_date is None):
            changes["completed_date"] = utcnow()

        updated = task.model_copy(update=changes)
        usernames = await self._usernames(task.assigned_to_id, updated.assigned_to_id)
        history = diff_task(task, updated, usernames, actor.id, utcnow())

        saved = await self.repository.update_task(updated, history)
        logger.info(
            "User %s updated task %s (%s)",
            actor.id,
            task_id,
            ", ".join(h.field_name for h in history) or "no tracked changes",
        )
        return (await build_task_views(self.repository, [saved]))[0]

    async def update_status(
        self, actor: Actor, task_id: int, payload: TaskStatusUpdate
    ) -> TaskView:
        """Change only the status (and optionally the actual hours).

        Always records exactly one ``Status`` history row carrying the
        optional comment.  Entering a terminal status stamps
        ``completed_date``; it is never cleared.
        """
        task, _ = await self._load(actor, task_id, Action.UPDATE_STATUS)

        now = utcnow()
        changes: dict[str, Any] = {"status": payload.status}
        if payload.actual_hours is not None:
            changes["actual_hours"] = payload.actual_hours
        if payload.status.is_terminal:
            changes["completed_date"] = now

        row = TaskHistory(
            task_id=task_id,
            changed_by_id=actor.id,
            field_name=HistoryField.STATUS.value,
            old_value=task.status.value,
            new_value=payload.status.value,
            comment=payload.comment,
            changed_at=now,
        )
        saved = await self.repository.update_task(task.model_copy(update=changes), [row])
        logger.info(
            "User %s moved task %s from %s to %s",
            actor.id,
            task_id,
            task.status.value,
            payload.status.value,
        )
        return (await build_task_views(self.repository, [saved]))[0]

    async def delete_task(self, actor: Actor, task_id: int) -> None:
        """Delete a task together with its history."""
        await self._load(actor, task_id, Action.DELETE)
        await self.repository.delete_task(task_id)
        logger.info("User %s deleted task %s", actor.id, task_id)

    async def _load(self, actor: Actor, task_id: int, action: Action) -> tuple[TaskItem, Project]:
        task = await self.repository.get_task(task_id)
        project = await self.repository.get_project(task.project_id)
        enforce(
            actor,
            ResourceKind.TASK,
            action,
            Ownership(manager_id=project.manager_id, assignee_id=task.assigned_to_id),
        )
        return task, project

    async def _check_assignee(self, project_id: int, user_id: int) -> None:
        try:
            user = await self.repository.get_user(user_id)
        except NotFoundError:
            raise InvalidOperationError(f"Assignee {user_id} does not exist") from None
        if not user.is_active:
            raise InvalidOperationError(f"Assignee {user_id} is not active")
        if not await self.repository.is_project_member(project_id, user_id):
            raise InvalidOperationError(
                f"Assignee {user_id} is not a member of project {project_id}"
            )

    async def _usernames(self, *user_ids: int | None) -> dict[int, str]:
        users = await self.repository.get_users(uid for uid in user_ids if uid is not None)
        return {uid: u.username for uid, u in users.items()}


__all__ = ["TaskService", "build_task_views", "diff_task"]
