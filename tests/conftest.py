"""Shared pytest fixtures for the taskmanager test suite.

Design philosophy
-----------------
- Everything runs against the in-memory repository or SQLite in-memory, so
  the suite needs no external services.
- Fixtures are async where the SUT is async.
- Scope is "function" by default to guarantee full isolation.  Only the
  password hash is session-scoped: Argon2 is deliberately slow and the hash
  is never mutated.
"""
from __future__ import annotations

from dataclasses import dataclass, field

import pytest
import pytest_asyncio

from taskmanager.auth.service import AuthService
from taskmanager.auth.tokens import TokenService
from taskmanager.core.config import TaskManagerConfig
from taskmanager.core.types import Actor, ProjectCreate, Role, User
from taskmanager.services.dashboard import DashboardService
from taskmanager.services.projects import ProjectService
from taskmanager.services.tasks import TaskService
from taskmanager.services.users import UserService
from taskmanager.storage.memory import InMemoryRepository
from taskmanager.utils.security import hash_password

TEST_SECRET = "test-secret-key-with-at-least-32-characters"
TEST_PASSWORD = "password123"
SQLITE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> TaskManagerConfig:
    return TaskManagerConfig(
        database_url=SQLITE_URL,
        jwt_secret=TEST_SECRET,
        seed_admin=False,
    )


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@dataclass
class World:
    """The cast of users every service test starts with."""

    admin: User
    m1: User
    m2: User
    u1: User
    u2: User
    extra: dict[str, User] = field(default_factory=dict)

    def actor(self, name: str) -> Actor:
        user = getattr(self, name, None) or self.extra[name]
        return Actor(id=user.id, role=user.role, username=user.username)


def build_user(username: str, role: Role, password_hash: str, **kw: object) -> User:
    return User(
        username=username,
        email=kw.pop("email", f"{username}@example.com"),  # type: ignore[arg-type]
        password_hash=password_hash,
        first_name=kw.pop("first_name", username.capitalize()),  # type: ignore[arg-type]
        last_name=kw.pop("last_name", "Tester"),  # type: ignore[arg-type]
        role=role,
        **kw,  # type: ignore[arg-type]
    )


@pytest.fixture
def make_user(password_hash: str):
    """Factory for unsaved users sharing the test password."""

    def _make(username: str, role: Role = Role.USER, **kw: object) -> User:
        return build_user(username, role, password_hash, **kw)

    return _make


@pytest_asyncio.fixture
async def world(repo: InMemoryRepository, password_hash: str) -> World:
    """Admin, two Managers and two Users stored in ``repo``."""
    cast = {}
    for username, role in (
        ("admin", Role.ADMIN),
        ("m1", Role.MANAGER),
        ("m2", Role.MANAGER),
        ("u1", Role.USER),
        ("u2", Role.USER),
    ):
        cast[username] = await repo.create_user(build_user(username, role, password_hash))
    return World(**cast)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def token_service(config: TaskManagerConfig) -> TokenService:
    return TokenService.from_config(config)


@pytest.fixture
def auth_service(
    repo: InMemoryRepository, token_service: TokenService, config: TaskManagerConfig
) -> AuthService:
    return AuthService(repo, token_service, refresh_ttl=config.refresh_token_ttl)


@pytest.fixture
def user_service(repo: InMemoryRepository) -> UserService:
    return UserService(repo)


@pytest.fixture
def project_service(repo: InMemoryRepository) -> ProjectService:
    return ProjectService(repo)


@pytest.fixture
def task_service(repo: InMemoryRepository) -> TaskService:
    return TaskService(repo)


@pytest.fixture
def dashboard_service(repo: InMemoryRepository) -> DashboardService:
    return DashboardService(repo)


@pytest_asyncio.fixture
async def project(world: World, project_service: ProjectService):
    """Project managed by m1 with u1 as its only member."""
    created = await project_service.create_project(
        world.actor("m1"), ProjectCreate(name="Apollo")
    )
    await project_service.assign_users(world.actor("m1"), created.id, [world.u1.id])
    return await project_service.get_project(world.actor("m1"), created.id)
