"""Application manager - lifecycle, admin seeding and service wiring.

Lifecycle
---------
1. **Construct**: stores configuration and an optional repository override.
   No I/O.
2. **initialize()**: creates tables, seeds the initial Admin when the store
   has no users, and builds the services.
3. **shutdown()**: disposes connection pools.

The recommended integration uses :meth:`AppManager.create_lifespan`::

    app = FastAPI(lifespan=AppManager.create_lifespan(config))
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from taskmanager.auth.service import AuthService
from taskmanager.auth.tokens import TokenService
from taskmanager.core.exceptions import ConflictError
from taskmanager.core.types import Role, User
from taskmanager.services.dashboard import DashboardService
from taskmanager.services.projects import ProjectService
from taskmanager.services.tasks import TaskService
from taskmanager.services.users import UserService
from taskmanager.utils.security import hash_password

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI
    from starlette.types import Lifespan

    from taskmanager.core.config import TaskManagerConfig
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)


class AppManager:
    """Owns the repository and the services built on top of it.

    Parameters
    ----------
    config:
        Validated :class:`~taskmanager.core.config.TaskManagerConfig`.
    repository:
        Override the default :class:`~taskmanager.storage.database.SQLAlchemyRepository`.
        Useful for testing with :class:`~taskmanager.storage.memory.InMemoryRepository`.
    """

    def __init__(
        self,
        config: TaskManagerConfig,
        *,
        repository: Repository | None = None,
    ) -> None:
        self.config = config
        self._initialized = False
        self._custom_repository = repository

        # These are set during initialize()
        self.repository: Repository
        self.tokens: TokenService
        self.auth: AuthService
        self.users: UserService
        self.projects: ProjectService
        self.tasks: TaskService
        self.dashboard: DashboardService

        logger.info("AppManager created")

    async def initialize(self) -> None:
        """Initialise storage, seed the Admin and build the services.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if self._initialized:
            return

        logger.info("AppManager initialising ...")

        self._initialize_storage()
        await self.repository.initialize()
        self._initialize_services()
        await self._seed_admin()

        self._initialized = True
        logger.info("AppManager initialised")

    async def shutdown(self) -> None:
        """Release all resources."""
        if not self._initialized:
            return

        logger.info("AppManager shutting down ...")
        await self.repository.close()
        self._initialized = False
        logger.info("AppManager shutdown complete")

    async def __aenter__(self) -> AppManager:
        """Support ``async with AppManager(config) as m:`` in tests."""
        await self.initialize()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.shutdown()

    @staticmethod
    def create_lifespan(
        config: TaskManagerConfig,
        *,
        repository: Repository | None = None,
    ) -> Lifespan[FastAPI]:
        """Build a FastAPI ``lifespan`` context manager that manages an :class:`AppManager`.

        The manager and configuration are exposed on ``app.state`` so request
        dependencies can reach the services.
        """

        @asynccontextmanager
        async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
            manager = AppManager(config, repository=repository)
            app.state.app_manager = manager
            app.state.config = config

            await manager.initialize()
            try:
                yield
            finally:
                await manager.shutdown()

        return _lifespan

    def _initialize_storage(self) -> None:
        if self._custom_repository is not None:
            self.repository = self._custom_repository
        else:
            from taskmanager.storage.database import SQLAlchemyRepository
            self.repository = SQLAlchemyRepository(
                database_url=self.config.database_url,
                pool_size=self.config.database_pool_size,
                max_overflow=self.config.database_max_overflow,
                pool_timeout=self.config.database_pool_timeout,
                pool_recycle=self.config.database_pool_recycle,
                echo=self.config.database_echo,
            )

    def _initialize_services(self) -> None:
        self.tokens = TokenService.from_config(self.config)
        self.auth = AuthService(
            self.repository, self.tokens, refresh_ttl=self.config.refresh_token_ttl
        )
        self.users = UserService(self.repository)
        self.projects = ProjectService(self.repository)
        self.tasks = TaskService(self.repository)
        self.dashboard = DashboardService(self.repository)

    async def _seed_admin(self) -> None:
        """Create the initial Admin when enabled and the store has no users."""
        if not self.config.seed_admin:
            return
        if await self.repository.count_users() > 0:
            return
        admin = User(
            username=self.config.admin_username,
            email=self.config.admin_email,
            password_hash=hash_password(self.config.admin_password),
            first_name=self.config.admin_first_name,
            last_name=self.config.admin_last_name,
            role=Role.ADMIN,
        )
        try:
            created = await self.repository.create_user(admin)
        except ConflictError as exc:
            # Another worker seeded concurrently
            logger.warning("Initial admin not created: %s", exc)
            return
        logger.info("Created initial admin user %s (%s)", created.id, created.username)

    async def health_check(self) -> dict[str, Any]:
        """Return health information for the repository."""
        health: dict[str, Any] = {"status": "healthy", "components": {}}
        try:
            count = await self.repository.count_users()
            health["components"]["repository"] = {
                "status": "healthy",
                "user_count": count,
            }
        except Exception as exc:
            health["status"] = "unhealthy"
            health["components"]["repository"] = {
                "status": "unhealthy",
                "error": str(exc),
            }
        return health


__all__ = ["AppManager"]
