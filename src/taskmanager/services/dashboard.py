"""Role-scoped dashboard aggregation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from taskmanager.core.types import (
    Dashboard,
    ProjectStatus,
    ProjectTaskSummary,
    Role,
    TaskStatus,
    utcnow,
)
from taskmanager.services.tasks import build_task_views

if TYPE_CHECKING:
    from collections.abc import Sequence

    from taskmanager.core.types import Actor, Project, TaskItem, User
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)

RECENT_TASKS_LIMIT = 10
UPCOMING_DEADLINES_LIMIT = 10


def start_of_today(now: datetime | None = None) -> datetime:
    """Midnight UTC of the current day."""
    return (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)


def is_overdue(task: TaskItem, today: datetime) -> bool:
    return task.due_date is not None and task.due_date < today and not task.status.is_terminal


def summarize_project(project: Project, tasks: Sequence[TaskItem]) -> ProjectTaskSummary:
    """Task counts and completion percentage (two decimals) of one project."""
    own = [t for t in tasks if t.project_id == project.id]
    completed = sum(1 for t in own if t.status.is_terminal)
    return ProjectTaskSummary(
        project_id=project.id,  # type: ignore[arg-type]
        project_name=project.name,
        total_tasks=len(own),
        completed_tasks=completed,
        in_progress_tasks=sum(1 for t in own if t.status == TaskStatus.IN_PROGRESS),
        completion_percentage=round(completed / len(own) * 100, 2) if own else 0.0,
    )


class DashboardService:
    """Build the dashboard for the calling actor's scope.

    - Admin: everything; users counted among roles User and Manager.
    - Manager: managed projects, their tasks and their distinct members.
    - User: tasks assigned to them and the projects of those tasks.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def get_dashboard(self, actor: Actor) -> Dashboard:
        if actor.role == Role.ADMIN:
            projects = await self.repository.list_projects()
            tasks = await self.repository.list_tasks()
            users = await self.repository.list_users(roles=[Role.USER, Role.MANAGER])
            summaries = [summarize_project(p, tasks) for p in projects]
        elif actor.role == Role.MANAGER:
            projects = await self.repository.list_projects(manager_id=actor.id)
            project_ids = [p.id for p in projects]
            tasks = await self.repository.list_tasks(project_ids=project_ids)
            memberships = await self.repository.list_memberships(project_ids=project_ids)
            users = list((await self.repository.get_users(m.user_id for m in memberships)).values())
            summaries = [summarize_project(p, tasks) for p in projects]
        else:
            tasks = await self.repository.list_tasks(assigned_to_id=actor.id)
            projects = await self.repository.list_projects(
                project_ids={t.project_id for t in tasks}
            )
            users = []
            summaries = []

        dashboard = await self._assemble(projects, tasks, users, summaries)
        logger.debug(
            "Dashboard for actor %s: %d projects, %d tasks",
            actor.id,
            dashboard.total_projects,
            dashboard.total_tasks,
        )
        return dashboard

    async def _assemble(
        self,
        projects: Sequence[Project],
        tasks: Sequence[TaskItem],
        users: Sequence[User],
        summaries: list[ProjectTaskSummary],
    ) -> Dashboard:
        today = start_of_today()
        recent = list(tasks[:RECENT_TASKS_LIMIT])
        upcoming = sorted(
            (
                t for t in tasks
                if t.due_date is not None and t.due_date >= today and not t.status.is_terminal
            ),
            key=lambda t: t.due_date,  # type: ignore[arg-type, return-value]
        )[:UPCOMING_DEADLINES_LIMIT]

        return Dashboard(
            total_projects=len(projects),
            active_projects=sum(1 for p in projects if p.status == ProjectStatus.ACTIVE),
            total_tasks=len(tasks),
            completed_tasks=sum(1 for t in tasks if t.status.is_terminal),
            in_progress_tasks=sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
            overdue_tasks=sum(1 for t in tasks if is_overdue(t, today)),
            total_users=len(users),
            active_users=sum(1 for u in users if u.is_active),
            project_summaries=summaries,
            recent_tasks=await build_task_views(self.repository, recent),
            upcoming_deadlines=await build_task_views(self.repository, upcoming),
        )


__all__ = ["DashboardService", "is_overdue", "start_of_today", "summarize_project"]
