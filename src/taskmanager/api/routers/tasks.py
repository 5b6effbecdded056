"""Task endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from taskmanager.core.types import (
    TaskCreate,
    TaskDetail,
    TaskStatus,
    TaskStatusUpdate,
    TaskUpdate,
    TaskView,
)
from taskmanager.dependencies import ActorDep, ManagerDep

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("", response_model=list[TaskView])
async def list_tasks(
    actor: ActorDep,
    manager: ManagerDep,
    project_id: int | None = None,
    status: TaskStatus | None = None,
    assigned_to_id: int | None = None,
) -> list[TaskView]:
    return await manager.tasks.list_tasks(
        actor, project_id=project_id, status=status, assigned_to_id=assigned_to_id
    )


@router.get("/{task_id}", response_model=TaskDetail)
async def get_task(task_id: int, actor: ActorDep, manager: ManagerDep) -> TaskDetail:
    return await manager.tasks.get_task(actor, task_id)


@router.post("", response_model=TaskView, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreate, actor: ActorDep, manager: ManagerDep) -> TaskView:
    return await manager.tasks.create_task(actor, payload)


@router.put("/{task_id}", response_model=TaskView)
async def update_task(
    task_id: int, payload: TaskUpdate, actor: ActorDep, manager: ManagerDep
) -> TaskView:
    return await manager.tasks.update_task(actor, task_id, payload)


@router.put("/{task_id}/status", response_model=TaskView)
async def update_task_status(
    task_id: int, payload: TaskStatusUpdate, actor: ActorDep, manager: ManagerDep
) -> TaskView:
    return await manager.tasks.update_status(actor, task_id, payload)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, actor: ActorDep, manager: ManagerDep) -> Response:
    await manager.tasks.delete_task(actor, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
