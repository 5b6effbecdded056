"""FastAPI application factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI

from taskmanager.api.errors import register_exception_handlers
from taskmanager.api.routers import auth, dashboard, projects, tasks, users
from taskmanager.dependencies import ManagerDep
from taskmanager.manager import AppManager

if TYPE_CHECKING:
    from taskmanager.core.config import TaskManagerConfig
    from taskmanager.storage.repository import Repository

API_PREFIX = "/api"


def create_app(config: TaskManagerConfig, repository: Repository | None = None) -> FastAPI:
    """Build the HTTP application.

    Example:
        ```python
        app = create_app(TaskManagerConfig())

        # Tests: keep everything in memory
        app = create_app(config, repository=InMemoryRepository())
        ```
    """
    from taskmanager import __version__

    app = FastAPI(
        title="Task Manager API",
        version=__version__,
        lifespan=AppManager.create_lifespan(config, repository=repository),
    )
    register_exception_handlers(app)

    api = APIRouter(prefix=API_PREFIX)
    for module in (auth, users, projects, tasks, dashboard):
        api.include_router(module.router)
    app.include_router(api)

    @app.get("/health", tags=["Health"])
    async def health(manager: ManagerDep) -> dict[str, Any]:
        return await manager.health_check()

    return app


__all__ = ["API_PREFIX", "create_app"]
