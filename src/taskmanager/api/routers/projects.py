"""Project endpoints, including membership management."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from taskmanager.core.types import (
    ProjectCreate,
    ProjectMembersUpdate,
    ProjectUpdate,
    ProjectView,
    UserProfile,
)
from taskmanager.dependencies import ActorDep, ManagerDep

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.get("", response_model=list[ProjectView])
async def list_projects(actor: ActorDep, manager: ManagerDep) -> list[ProjectView]:
    return await manager.projects.list_projects(actor)


@router.get("/{project_id}", response_model=ProjectView)
async def get_project(project_id: int, actor: ActorDep, manager: ManagerDep) -> ProjectView:
    return await manager.projects.get_project(actor, project_id)


@router.post("", response_model=ProjectView, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate, actor: ActorDep, manager: ManagerDep
) -> ProjectView:
    return await manager.projects.create_project(actor, payload)


@router.put("/{project_id}", response_model=ProjectView)
async def update_project(
    project_id: int, payload: ProjectUpdate, actor: ActorDep, manager: ManagerDep
) -> ProjectView:
    return await manager.projects.update_project(actor, project_id, payload)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: int, actor: ActorDep, manager: ManagerDep) -> Response:
    """Delete a project with its tasks and memberships."""
    await manager.projects.delete_project(actor, project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/users", response_model=list[UserProfile])
async def list_project_users(
    project_id: int, actor: ActorDep, manager: ManagerDep
) -> list[UserProfile]:
    return await manager.projects.list_members(actor, project_id)


@router.post("/{project_id}/users", response_model=list[UserProfile])
async def assign_project_users(
    project_id: int, payload: ProjectMembersUpdate, actor: ActorDep, manager: ManagerDep
) -> list[UserProfile]:
    """Replace the project's members; ids that aren't role-User users are skipped."""
    return await manager.projects.assign_users(actor, project_id, payload.user_ids)
