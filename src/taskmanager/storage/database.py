"""SQLAlchemy-backed repository - multi-database compatible.

Works with any async SQLAlchemy dialect:
- PostgreSQL + asyncpg (production)
- SQLite + aiosqlite (development / CI)
- MySQL + aiomysql (alternative production)

The ORM models use pure SQLAlchemy 2.0 ``Mapped[T]`` syntax and no
database-specific column types.  Enum values are stored as their string
value.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    delete,
    event,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from taskmanager.core.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TaskManagerError,
)
from taskmanager.core.types import (
    Project,
    ProjectStatus,
    ProjectUser,
    RefreshToken,
    Role,
    TaskHistory,
    TaskItem,
    TaskPriority,
    TaskStatus,
    User,
    utcnow,
)
from taskmanager.storage.repository import Repository
from taskmanager.utils.db_compat import (
    as_utc,
    detect_dialect,
    needs_foreign_key_pragma,
    requires_static_pool,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class UserModel(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(500), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default=Role.USER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def apply(self, user: User) -> None:
        self.username = user.username
        self.email = user.email
        self.password_hash = user.password_hash
        self.first_name = user.first_name
        self.last_name = user.last_name
        self.role = user.role.value
        self.is_active = user.is_active
        self.created_by = user.created_by

    def to_domain(self) -> User:
        return User(
            id=self.id,
            username=self.username,
            email=self.email,
            password_hash=self.password_hash,
            first_name=self.first_name,
            last_name=self.last_name,
            role=Role(self.role),
            is_active=self.is_active,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            created_by=self.created_by,
        )


class ProjectModel(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    manager_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def apply(self, project: Project) -> None:
        self.name = project.name
        self.description = project.description
        self.start_date = as_utc(project.start_date)
        self.end_date = as_utc(project.end_date)
        self.status = project.status.value
        self.manager_id = project.manager_id

    def to_domain(self) -> Project:
        return Project(
            id=self.id,
            name=self.name,
            description=self.description,
            start_date=as_utc(self.start_date),
            end_date=as_utc(self.end_date),
            status=ProjectStatus(self.status),
            manager_id=self.manager_id,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )


class ProjectUserModel(Base):
    __tablename__ = "project_users"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    assigned_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> ProjectUser:
        return ProjectUser(
            id=self.id,
            project_id=self.project_id,
            user_id=self.user_id,
            assigned_date=as_utc(self.assigned_date),
        )


class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_to_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    assigned_by_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    estimated_hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    actual_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def apply(self, task: TaskItem) -> None:
        self.title = task.title
        self.description = task.description
        self.project_id = task.project_id
        self.assigned_to_id = task.assigned_to_id
        self.assigned_by_id = task.assigned_by_id
        self.status = task.status.value
        self.priority = task.priority.value
        self.estimated_hours = task.estimated_hours
        self.actual_hours = task.actual_hours
        self.start_date = as_utc(task.start_date)
        self.due_date = as_utc(task.due_date)
        self.completed_date = as_utc(task.completed_date)

    def to_domain(self) -> TaskItem:
        return TaskItem(
            id=self.id,
            title=self.title,
            description=self.description,
            project_id=self.project_id,
            assigned_to_id=self.assigned_to_id,
            assigned_by_id=self.assigned_by_id,
            status=TaskStatus(self.status),
            priority=TaskPriority(self.priority),
            estimated_hours=self.estimated_hours,
            actual_hours=self.actual_hours if self.actual_hours is not None else Decimal("0"),
            start_date=as_utc(self.start_date),
            due_date=as_utc(self.due_date),
            completed_date=as_utc(self.completed_date),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )


class TaskHistoryModel(Base):
    __tablename__ = "task_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    changed_by_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    old_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, row: TaskHistory, task_id: int) -> TaskHistoryModel:
        return cls(
            task_id=task_id,
            changed_by_id=row.changed_by_id,
            field_name=row.field_name,
            old_value=row.old_value,
            new_value=row.new_value,
            comment=row.comment,
            changed_at=as_utc(row.changed_at),
        )

    def to_domain(self) -> TaskHistory:
        return TaskHistory(
            id=self.id,
            task_id=self.task_id,
            changed_by_id=self.changed_by_id,
            field_name=self.field_name,
            old_value=self.old_value,
            new_value=self.new_value,
            comment=self.comment,
            changed_at=as_utc(self.changed_at),
        )


class RefreshTokenModel(Base):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(String(500), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @classmethod
    def from_domain(cls, token: RefreshToken) -> RefreshTokenModel:
        return cls(
            user_id=token.user_id,
            token=token.token,
            expires_at=as_utc(token.expires_at),
            created_at=as_utc(token.created_at),
            revoked_at=as_utc(token.revoked_at),
            is_revoked=token.is_revoked,
        )

    def to_domain(self) -> RefreshToken:
        return RefreshToken(
            id=self.id,
            user_id=self.user_id,
            token=self.token,
            expires_at=as_utc(self.expires_at),
            created_at=as_utc(self.created_at),
            revoked_at=as_utc(self.revoked_at),
            is_revoked=self.is_revoked,
        )


class SQLAlchemyRepository(Repository):
    """SQLAlchemy async repository - works with PostgreSQL, SQLite, MySQL.

    Every public method runs in its own session inside one transaction, so
    composite writes commit or roll back as a unit.

    Example (SQLite for testing)
    ----------------------------
    .. code-block:: python

        repo = SQLAlchemyRepository(database_url="sqlite+aiosqlite:///:memory:")
        await repo.initialize()
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ) -> None:
        dialect = detect_dialect(database_url)
        kw: dict[str, Any] = {"echo": echo}

        if requires_static_pool(dialect):
            kw["poolclass"] = StaticPool
            kw["connect_args"] = {"check_same_thread": False}
        else:
            kw["pool_size"] = pool_size
            kw["max_overflow"] = max_overflow
            kw["pool_timeout"] = pool_timeout
            kw["pool_pre_ping"] = pool_pre_ping
            kw["pool_recycle"] = pool_recycle

        self.engine: AsyncEngine = create_async_engine(database_url, **kw)
        if needs_foreign_key_pragma(dialect):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("SQLAlchemyRepository dialect=%s pool_size=%d", dialect.value, pool_size)

    async def initialize(self) -> None:
        """Create all tables if they don't exist (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("SQLAlchemyRepository closed")

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session with a transaction and translate backend errors."""
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except TaskManagerError:
                raise
            except IntegrityError as exc:
                logger.warning("Integrity violation during %s", operation)
                raise ConflictError("record", operation) from exc
            except SQLAlchemyError as exc:
                logger.error("Database error during %s: %s", operation, exc)
                raise PersistenceError(operation, str(exc)) from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> User:
        async with self._transaction("get_user") as session:
            model = await session.get(UserModel, user_id)
            if model is None:
                raise NotFoundError("User", user_id)
            return model.to_domain()

    async def find_user_by_username(self, username: str) -> User | None:
        async with self._transaction("find_user_by_username") as session:
            result = await session.execute(
                select(UserModel).where(UserModel.username == username)
            )
            model = result.scalar_one_or_none()
            return model.to_domain() if model is not None else None

    async def find_user_by_email(self, email: str) -> User | None:
        async with self._transaction("find_user_by_email") as session:
            result = await session.execute(select(UserModel).where(UserModel.email == email))
            model = result.scalar_one_or_none()
            return model.to_domain() if model is not None else None

    async def list_users(
        self,
        roles: Iterable[Role] | None = None,
        active_only: bool = False,
    ) -> list[User]:
        async with self._transaction("list_users") as session:
            query = select(UserModel)
            if roles is not None:
                query = query.where(UserModel.role.in_([r.value for r in roles]))
            if active_only:
                query = query.where(UserModel.is_active.is_(True))
            query = query.order_by(UserModel.first_name, UserModel.last_name, UserModel.id)
            result = await session.execute(query)
            return [m.to_domain() for m in result.scalars().all()]

    async def _check_user_unique(self, session: AsyncSession, user: User) -> None:
        taken = await session.execute(
            select(UserModel.username, UserModel.email).where(
                (UserModel.username == user.username) | (UserModel.email == user.email),
                UserModel.id != (user.id or 0),
            )
        )
        for username, _ in taken.all():
            if username == user.username:
                raise ConflictError("username", user.username)
            raise ConflictError("email", user.email)

    async def create_user(self, user: User) -> User:
        async with self._transaction("create_user") as session:
            await self._check_user_unique(session, user.model_copy(update={"id": None}))
            model = UserModel(
                created_at=as_utc(user.created_at), updated_at=as_utc(user.updated_at)
            )
            model.apply(user)
            session.add(model)
            await session.flush()
            logger.info("Created user: %s (%s)", model.id, model.username)
            return model.to_domain()

    async def update_user(self, user: User) -> User:
        async with self._transaction("update_user") as session:
            model = await session.get(UserModel, user.id)
            if model is None:
                raise NotFoundError("User", user.id)
            await self._check_user_unique(session, user)
            model.apply(user)
            model.updated_at = utcnow()
            await session.flush()
            logger.info("Updated user: %s", user.id)
            return model.to_domain()

    async def count_users(self) -> int:
        async with self._transaction("count_users") as session:
            result = await session.execute(select(func.count(UserModel.id)))
            return result.scalar() or 0

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        async with self._transaction("get_users") as session:
            result = await session.execute(select(UserModel).where(UserModel.id.in_(ids)))
            return {m.id: m.to_domain() for m in result.scalars().all()}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def get_project(self, project_id: int) -> Project:
        async with self._transaction("get_project") as session:
            model = await session.get(ProjectModel, project_id)
            if model is None:
                raise NotFoundError("Project", project_id)
            return model.to_domain()

    async def list_projects(
        self,
        manager_id: int | None = None,
        member_id: int | None = None,
        project_ids: Iterable[int] | None = None,
    ) -> list[Project]:
        async with self._transaction("list_projects") as session:
            query = select(ProjectModel)
            if manager_id is not None:
                query = query.where(ProjectModel.manager_id == manager_id)
            if member_id is not None:
                joined = select(ProjectUserModel.project_id).where(
                    ProjectUserModel.user_id == member_id
                )
                query = query.where(ProjectModel.id.in_(joined))
            if project_ids is not None:
                query = query.where(ProjectModel.id.in_(list(project_ids)))
            query = query.order_by(ProjectModel.created_at.desc(), ProjectModel.id.desc())
            result = await session.execute(query)
            return [m.to_domain() for m in result.scalars().all()]

    async def create_project(self, project: Project) -> Project:
        async with self._transaction("create_project") as session:
            model = ProjectModel(
                created_at=as_utc(project.created_at), updated_at=as_utc(project.updated_at)
            )
            model.apply(project)
            session.add(model)
            await session.flush()
            logger.info("Created project: %s (%s)", model.id, model.name)
            return model.to_domain()

    async def update_project(self, project: Project) -> Project:
        async with self._transaction("update_project") as session:
            model = await session.get(ProjectModel, project.id)
            if model is None:
                raise NotFoundError("Project", project.id)
            model.apply(project)
            model.updated_at = utcnow()
            await session.flush()
            logger.info("Updated project: %s", project.id)
            return model.to_domain()

    async def delete_project(self, project_id: int) -> None:
        async with self._transaction("delete_project") as session:
            model = await session.get(ProjectModel, project_id)
            if model is None:
                raise NotFoundError("Project", project_id)

            task_ids = select(TaskModel.id).where(TaskModel.project_id == project_id)
            await session.execute(
                delete(TaskHistoryModel).where(TaskHistoryModel.task_id.in_(task_ids))
            )
            await session.execute(delete(TaskModel).where(TaskModel.project_id == project_id))
            await session.execute(
                delete(ProjectUserModel).where(ProjectUserModel.project_id == project_id)
            )
            await session.delete(model)
        logger.info("Deleted project: %s", project_id)

    async def list_memberships(
        self,
        project_ids: Iterable[int] | None = None,
        user_id: int | None = None,
    ) -> list[ProjectUser]:
        async with self._transaction("list_memberships") as session:
            query = select(ProjectUserModel)
            if project_ids is not None:
                query = query.where(ProjectUserModel.project_id.in_(list(project_ids)))
            if user_id is not None:
                query = query.where(ProjectUserModel.user_id == user_id)
            result = await session.execute(query.order_by(ProjectUserModel.id))
            return [m.to_domain() for m in result.scalars().all()]

    async def replace_project_members(
        self,
        project_id: int,
        user_ids: Sequence[int],
    ) -> list[ProjectUser]:
        async with self._transaction("replace_project_members") as session:
            if await session.get(ProjectModel, project_id) is None:
                raise NotFoundError("Project", project_id)

            await session.execute(
                delete(ProjectUserModel).where(ProjectUserModel.project_id == project_id)
            )
            now = utcnow()
            models = [
                ProjectUserModel(project_id=project_id, user_id=user_id, assigned_date=now)
                for user_id in dict.fromkeys(user_ids)
            ]
            session.add_all(models)
            await session.flush()
            logger.info("Replaced members of project %s (%d users)", project_id, len(models))
            return [m.to_domain() for m in models]

    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        async with self._transaction("is_project_member") as session:
            result = await session.execute(
                select(ProjectUserModel.id).where(
                    ProjectUserModel.project_id == project_id,
                    ProjectUserModel.user_id == user_id,
                )
            )
            return result.first() is not None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_task(self, task_id: int) -> TaskItem:
        async with self._transaction("get_task") as session:
            model = await session.get(TaskModel, task_id)
            if model is None:
                raise NotFoundError("Task", task_id)
            return model.to_domain()

    async def list_tasks(
        self,
        project_ids: Iterable[int] | None = None,
        project_id: int | None = None,
        status: TaskStatus | None = None,
        assigned_to_id: int | None = None,
    ) -> list[TaskItem]:
        async with self._transaction("list_tasks") as session:
            query = select(TaskModel)
            if project_ids is not None:
                query = query.where(TaskModel.project_id.in_(list(project_ids)))
            if project_id is not None:
                query = query.where(TaskModel.project_id == project_id)
            if status is not None:
                query = query.where(TaskModel.status == status.value)
            if assigned_to_id is not None:
                query = query.where(TaskModel.assigned_to_id == assigned_to_id)
            query = query.order_by(TaskModel.created_at.desc(), TaskModel.id.desc())
            result = await session.execute(query)
            return [m.to_domain() for m in result.scalars().all()]

    async def create_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        async with self._transaction("create_task") as session:
            if await session.get(ProjectModel, task.project_id) is None:
                raise NotFoundError("Project", task.project_id)

            model = TaskModel(
                created_at=as_utc(task.created_at), updated_at=as_utc(task.updated_at)
            )
            model.apply(task)
            session.add(model)
            await session.flush()
            session.add_all(TaskHistoryModel.from_domain(row, model.id) for row in history)
            await session.flush()
            logger.info("Created task: %s in project %s", model.id, model.project_id)
            return model.to_domain()

    async def update_task(
        self,
        task: TaskItem,
        history: Sequence[TaskHistory] = (),
    ) -> TaskItem:
        async with self._transaction("update_task") as session:
            model = await session.get(TaskModel, task.id)
            if model is None:
                raise NotFoundError("Task", task.id)
            model.apply(task)
            model.updated_at = utcnow()
            session.add_all(TaskHistoryModel.from_domain(row, model.id) for row in history)
            await session.flush()
            logger.info("Updated task: %s (%d history rows)", task.id, len(history))
            return model.to_domain()

    async def delete_task(self, task_id: int) -> None:
        async with self._transaction("delete_task") as session:
            model = await session.get(TaskModel, task_id)
            if model is None:
                raise NotFoundError("Task", task_id)
            await session.execute(
                delete(TaskHistoryModel).where(TaskHistoryModel.task_id == task_id)
            )
            await session.delete(model)
        logger.info("Deleted task: %s", task_id)

    async def list_task_history(self, task_id: int) -> list[TaskHistory]:
        async with self._transaction("list_task_history") as session:
            result = await session.execute(
                select(TaskHistoryModel)
                .where(TaskHistoryModel.task_id == task_id)
                .order_by(TaskHistoryModel.changed_at, TaskHistoryModel.id)
            )
            return [m.to_domain() for m in result.scalars().all()]

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def add_refresh_token(self, token: RefreshToken) -> RefreshToken:
        async with self._transaction("add_refresh_token") as session:
            model = RefreshTokenModel.from_domain(token)
            session.add(model)
            await session.flush()
            return model.to_domain()

    async def find_refresh_token(self, token: str) -> RefreshToken | None:
        async with self._transaction("find_refresh_token") as session:
            result = await session.execute(
                select(RefreshTokenModel).where(RefreshTokenModel.token == token)
            )
            model = result.scalar_one_or_none()
            return model.to_domain() if model is not None else None

    async def rotate_refresh_token(
        self,
        old_token: str,
        new_token: RefreshToken,
        revoked_at: datetime,
    ) -> RefreshToken | None:
        async with self._transaction("rotate_refresh_token") as session:
            # Conditional revoke: only one concurrent caller can match the row
            result = await session.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.token == old_token,
                    RefreshTokenModel.is_revoked.is_(False),
                    RefreshTokenModel.expires_at > revoked_at,
                )
                .values(is_revoked=True, revoked_at=revoked_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            model = RefreshTokenModel.from_domain(new_token)
            session.add(model)
            await session.flush()
            logger.info("Rotated refresh token for user %s", model.user_id)
            return model.to_domain()

    async def revoke_refresh_token(self, token: str, revoked_at: datetime) -> bool:
        async with self._transaction("revoke_refresh_token") as session:
            result = await session.execute(
                select(RefreshTokenModel).where(RefreshTokenModel.token == token)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return False
            if not model.is_revoked:
                model.is_revoked = True
                model.revoked_at = revoked_at
            return True

    async def revoke_user_refresh_tokens(self, user_id: int, revoked_at: datetime) -> int:
        async with self._transaction("revoke_user_refresh_tokens") as session:
            result = await session.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.user_id == user_id,
                    RefreshTokenModel.is_revoked.is_(False),
                )
                .values(is_revoked=True, revoked_at=revoked_at)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0
        logger.info("Revoked %d refresh tokens of user %s", count, user_id)
        return count

    async def list_refresh_tokens(self, user_id: int) -> list[RefreshToken]:
        async with self._transaction("list_refresh_tokens") as session:
            result = await session.execute(
                select(RefreshTokenModel)
                .where(RefreshTokenModel.user_id == user_id)
                .order_by(RefreshTokenModel.created_at.desc(), RefreshTokenModel.id.desc())
            )
            return [m.to_domain() for m in result.scalars().all()]


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


__all__ = [
    "Base",
    "ProjectModel",
    "ProjectUserModel",
    "RefreshTokenModel",
    "SQLAlchemyRepository",
    "TaskHistoryModel",
    "TaskModel",
    "UserModel",
]
