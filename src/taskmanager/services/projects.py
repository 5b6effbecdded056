"""Project management: scoping, ownership, membership and cascading delete."""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

from taskmanager.core.exceptions import InvalidOperationError, NotFoundError
from taskmanager.core.types import Project, ProjectView, Role
from taskmanager.policy import Action, Ownership, ResourceKind, enforce

if TYPE_CHECKING:
    from collections.abc import Sequence

    from taskmanager.core.types import (
        Actor,
        ProjectCreate,
        ProjectUpdate,
        User,
        UserProfile,
    )
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)

_MANAGING_ROLES = frozenset({Role.ADMIN, Role.MANAGER})


class ProjectService:
    """Projects as seen by each role.

    Admins see every project, Managers the projects they manage and Users the
    projects they are members of.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def list_projects(self, actor: Actor) -> list[ProjectView]:
        """List the projects visible to *actor*, newest first."""
        enforce(actor, ResourceKind.PROJECT, Action.LIST)
        if actor.role == Role.ADMIN:
            projects = await self.repository.list_projects()
        elif actor.role == Role.MANAGER:
            projects = await self.repository.list_projects(manager_id=actor.id)
        else:
            projects = await self.repository.list_projects(member_id=actor.id)
        logger.debug("Listed %d projects for actor %s", len(projects), actor.id)
        return await self._views(projects)

    async def get_project(self, actor: Actor, project_id: int) -> ProjectView:
        project = await self._load(actor, project_id, Action.READ)
        return (await self._views([project]))[0]

    async def create_project(self, actor: Actor, payload: ProjectCreate) -> ProjectView:
        """Create a project.

        A Manager always becomes the manager of the project they create; an
        Admin may name any active Admin or Manager (default: themselves).
        """
        enforce(actor, ResourceKind.PROJECT, Action.CREATE)
        if actor.role == Role.ADMIN and payload.manager_id is not None:
            manager_id = payload.manager_id
            await self._check_manager(manager_id)
        else:
            manager_id = actor.id

        project = Project(
            name=payload.name,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            status=payload.status,
            manager_id=manager_id,
        )
        created = await self.repository.create_project(project)
        logger.info("User %s created project %s", actor.id, created.id)
        return (await self._views([created]))[0]

    async def update_project(
        self, actor: Actor, project_id: int, payload: ProjectUpdate
    ) -> ProjectView:
        """Apply a partial update.  Only an Admin may reassign the manager."""
        project = await self._load(actor, project_id, Action.UPDATE)

        # name and status are required on the entity, so null means unchanged
        changes = {
            name: getattr(payload, name)
            for name in payload.model_fields_set
            if name != "manager_id"
            and not (name in ("name", "status") and getattr(payload, name) is None)
        }

        if (
            actor.role == Role.ADMIN
            and payload.manager_id is not None
            and payload.manager_id != project.manager_id
        ):
            await self._check_manager(payload.manager_id)
            changes["manager_id"] = payload.manager_id
            logger.info("Project %s reassigned to manager %s", project_id, payload.manager_id)

        updated = await self.repository.update_project(project.model_copy(update=changes))
        logger.info("User %s updated project %s", actor.id, project_id)
        return (await self._views([updated]))[0]

    async def delete_project(self, actor: Actor, project_id: int) -> None:
        """Delete a project with its tasks, task history and memberships."""
        await self._load(actor, project_id, Action.DELETE)
        await self.repository.delete_project(project_id)
        logger.info("User %s deleted project %s", actor.id, project_id)

    async def assign_users(
        self, actor: Actor, project_id: int, user_ids: Sequence[int]
    ) -> list[UserProfile]:
        """Replace the membership set of a project.

        Ids that don't resolve to a user with role ``User`` are skipped
        silently.
        """
        await self._load(actor, project_id, Action.ASSIGN_MEMBERS)

        users = await self.repository.get_users(user_ids)
        accepted = [
            uid for uid in dict.fromkeys(user_ids) if uid in users and users[uid].role == Role.USER
        ]
        skipped = len(set(user_ids)) - len(accepted)
        if skipped:
            logger.info("Skipped %d non-User ids assigning project %s", skipped, project_id)

        await self.repository.replace_project_members(project_id, accepted)
        logger.info("User %s set %d members on project %s", actor.id, len(accepted), project_id)
        return [users[uid].to_profile() for uid in accepted]

    async def list_members(self, actor: Actor, project_id: int) -> list[UserProfile]:
        await self._load(actor, project_id, Action.LIST_MEMBERS)
        memberships = await self.repository.list_memberships(project_ids=[project_id])
        users = await self.repository.get_users(m.user_id for m in memberships)
        return [users[m.user_id].to_profile() for m in memberships if m.user_id in users]

    async def _load(self, actor: Actor, project_id: int, action: Action) -> Project:
        project = await self.repository.get_project(project_id)
        is_member = (
            actor.role == Role.USER
            and await self.repository.is_project_member(project_id, actor.id)
        )
        enforce(
            actor,
            ResourceKind.PROJECT,
            action,
            Ownership(manager_id=project.manager_id, is_member=is_member),
        )
        return project

    async def _check_manager(self, manager_id: int) -> User:
        try:
            manager = await self.repository.get_user(manager_id)
        except NotFoundError:
            raise InvalidOperationError(f"Manager {manager_id} does not exist") from None
        if not manager.is_active or manager.role not in _MANAGING_ROLES:
            raise InvalidOperationError(f"User {manager_id} cannot manage projects")
        return manager

    async def _views(self, projects: Sequence[Project]) -> list[ProjectView]:
        if not projects:
            return []
        project_ids = [p.id for p in projects]
        memberships = await self.repository.list_memberships(project_ids=project_ids)
        tasks = await self.repository.list_tasks(project_ids=project_ids)
        users = await self.repository.get_users(
            [p.manager_id for p in projects] + [m.user_id for m in memberships]
        )

        total = Counter(t.project_id for t in tasks)
        completed = Counter(t.project_id for t in tasks if t.status.is_terminal)

        views = []
        for project in projects:
            manager = users.get(project.manager_id)
            members = [
                users[m.user_id].to_profile()
                for m in memberships
                if m.project_id == project.id and m.user_id in users
            ]
            views.append(
                ProjectView(
                    **project.model_dump(exclude={"updated_at"}),
                    manager=manager.to_profile() if manager else None,
                    assigned_users=members,
                    task_count=total[project.id],
                    completed_task_count=completed[project.id],
                )
            )
        return views


__all__ = ["ProjectService"]
