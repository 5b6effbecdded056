"""Dashboard endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from taskmanager.core.types import Dashboard
from taskmanager.dependencies import ActorDep, ManagerDep

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("", response_model=Dashboard)
async def get_dashboard(actor: ActorDep, manager: ManagerDep) -> Dashboard:
    """Counts, summaries and task lists scoped to the caller's role."""
    return await manager.dashboard.get_dashboard(actor)
