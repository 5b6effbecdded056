"""Tests for ProjectService."""
from __future__ import annotations

import pytest

from taskmanager.core.exceptions import ForbiddenError, InvalidOperationError, NotFoundError
from taskmanager.core.types import (
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    TaskCreate,
    TaskStatus,
    TaskStatusUpdate,
)
from taskmanager.services.projects import ProjectService
from taskmanager.services.tasks import TaskService
from taskmanager.storage.memory import InMemoryRepository


class TestScoping:

    @pytest.mark.asyncio
    async def test_each_role_sees_its_projects(
        self, project_service: ProjectService, project, world
    ) -> None:
        other = await project_service.create_project(world.actor("m2"), ProjectCreate(name="Zeus"))

        admin_view = await project_service.list_projects(world.actor("admin"))
        assert [p.id for p in admin_view] == [other.id, project.id]
        assert [p.id for p in await project_service.list_projects(world.actor("m1"))] == [project.id]
        assert [p.id for p in await project_service.list_projects(world.actor("m2"))] == [other.id]
        assert [p.id for p in await project_service.list_projects(world.actor("u1"))] == [project.id]
        assert await project_service.list_projects(world.actor("u2")) == []

    @pytest.mark.asyncio
    async def test_get_visibility(self, project_service: ProjectService, project, world) -> None:
        view = await project_service.get_project(world.actor("u1"), project.id)
        assert view.manager.username == "m1"
        assert [u.username for u in view.assigned_users] == ["u1"]

        with pytest.raises(ForbiddenError):
            await project_service.get_project(world.actor("u2"), project.id)
        with pytest.raises(ForbiddenError):
            await project_service.get_project(world.actor("m2"), project.id)
        with pytest.raises(NotFoundError):
            await project_service.get_project(world.actor("admin"), 404)


class TestCreate:

    @pytest.mark.asyncio
    async def test_manager_owns_what_they_create(
        self, project_service: ProjectService, world
    ) -> None:
        view = await project_service.create_project(
            world.actor("m1"), ProjectCreate(name="Mine", manager_id=world.m2.id)
        )
        assert view.manager_id == world.m1.id
        assert view.status == ProjectStatus.ACTIVE
        assert view.task_count == 0

    @pytest.mark.asyncio
    async def test_admin_names_manager(self, project_service: ProjectService, world) -> None:
        view = await project_service.create_project(
            world.actor("admin"), ProjectCreate(name="Delegated", manager_id=world.m2.id)
        )
        assert view.manager_id == world.m2.id

        own = await project_service.create_project(world.actor("admin"), ProjectCreate(name="Own"))
        assert own.manager_id == world.admin.id

    @pytest.mark.asyncio
    async def test_admin_cannot_name_a_user_as_manager(
        self, project_service: ProjectService, world
    ) -> None:
        with pytest.raises(InvalidOperationError):
            await project_service.create_project(
                world.actor("admin"), ProjectCreate(name="Bad", manager_id=world.u1.id)
            )
        with pytest.raises(InvalidOperationError):
            await project_service.create_project(
                world.actor("admin"), ProjectCreate(name="Bad", manager_id=999)
            )

    @pytest.mark.asyncio
    async def test_user_cannot_create(self, project_service: ProjectService, world) -> None:
        with pytest.raises(ForbiddenError):
            await project_service.create_project(world.actor("u1"), ProjectCreate(name="Nope"))


class TestUpdate:

    @pytest.mark.asyncio
    async def test_partial_update(self, project_service: ProjectService, project, world) -> None:
        view = await project_service.update_project(
            world.actor("m1"), project.id, ProjectUpdate(status=ProjectStatus.ON_HOLD)
        )
        assert view.status == ProjectStatus.ON_HOLD
        assert view.name == "Apollo"

    @pytest.mark.asyncio
    async def test_description_can_be_cleared(
        self, project_service: ProjectService, world
    ) -> None:
        created = await project_service.create_project(
            world.actor("m1"), ProjectCreate(name="Docs", description="old")
        )
        view = await project_service.update_project(
            world.actor("m1"), created.id, ProjectUpdate(description=None, name=None)
        )
        assert view.description is None
        assert view.name == "Docs"

    @pytest.mark.asyncio
    async def test_manager_cannot_reassign(
        self, project_service: ProjectService, project, world
    ) -> None:
        view = await project_service.update_project(
            world.actor("m1"), project.id, ProjectUpdate(manager_id=world.m2.id)
        )
        assert view.manager_id == world.m1.id

    @pytest.mark.asyncio
    async def test_admin_reassigns(self, project_service: ProjectService, project, world) -> None:
        view = await project_service.update_project(
            world.actor("admin"), project.id, ProjectUpdate(manager_id=world.m2.id)
        )
        assert view.manager_id == world.m2.id
        assert [p.id for p in await project_service.list_projects(world.actor("m2"))] == [project.id]

    @pytest.mark.asyncio
    async def test_other_manager_forbidden(
        self, project_service: ProjectService, project, world
    ) -> None:
        with pytest.raises(ForbiddenError):
            await project_service.update_project(
                world.actor("m2"), project.id, ProjectUpdate(name="Hijack")
            )


class TestMembers:

    @pytest.mark.asyncio
    async def test_assign_skips_non_users(
        self, project_service: ProjectService, project, world
    ) -> None:
        assigned = await project_service.assign_users(
            world.actor("m1"),
            project.id,
            [world.u2.id, world.m2.id, world.admin.id, 999, world.u2.id],
        )
        assert [u.username for u in assigned] == ["u2"]

        members = await project_service.list_members(world.actor("m1"), project.id)
        assert [u.username for u in members] == ["u2"]

    @pytest.mark.asyncio
    async def test_assign_empty_clears(
        self, project_service: ProjectService, project, world
    ) -> None:
        assert await project_service.assign_users(world.actor("admin"), project.id, []) == []
        assert await project_service.list_projects(world.actor("u1")) == []

    @pytest.mark.asyncio
    async def test_member_listing_is_restricted(
        self, project_service: ProjectService, project, world
    ) -> None:
        with pytest.raises(ForbiddenError):
            await project_service.list_members(world.actor("u1"), project.id)
        with pytest.raises(ForbiddenError):
            await project_service.assign_users(world.actor("m2"), project.id, [world.u2.id])


class TestDeleteAndCounts:

    @pytest.mark.asyncio
    async def test_task_counts(
        self, project_service: ProjectService, task_service: TaskService, project, world
    ) -> None:
        m1 = world.actor("m1")
        done = await task_service.create_task(
            m1, TaskCreate(title="Done", project_id=project.id, assigned_to_id=world.u1.id)
        )
        await task_service.create_task(m1, TaskCreate(title="Open", project_id=project.id))
        await task_service.update_status(m1, done.id, TaskStatusUpdate(status=TaskStatus.TESTED))

        view = await project_service.get_project(m1, project.id)
        assert view.task_count == 2
        assert view.completed_task_count == 1

    @pytest.mark.asyncio
    async def test_delete_cascades(
        self,
        project_service: ProjectService,
        task_service: TaskService,
        repo: InMemoryRepository,
        project,
        world,
    ) -> None:
        await task_service.create_task(
            world.actor("m1"),
            TaskCreate(title="T", project_id=project.id, assigned_to_id=world.u1.id),
        )
        await project_service.delete_project(world.actor("m1"), project.id)

        stats = repo.get_statistics()
        assert stats["projects"] == 0
        assert stats["tasks"] == 0
        assert stats["history"] == 0
        assert stats["memberships"] == 0

    @pytest.mark.asyncio
    async def test_delete_forbidden(self, project_service: ProjectService, project, world) -> None:
        with pytest.raises(ForbiddenError):
            await project_service.delete_project(world.actor("m2"), project.id)
        with pytest.raises(ForbiddenError):
            await project_service.delete_project(world.actor("u1"), project.id)
