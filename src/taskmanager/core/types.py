"""Core types, entities and payload models for taskmanager.

Entities are frozen pydantic models.  Relations are plain id fields; the
repository owns the arena of entities and nothing holds an object graph.
Services never mutate an entity in place, they build a modified copy with
``model_copy(update={...})`` and hand it back to the repository.
"""
from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskmanager.utils.db_compat import as_utc
from taskmanager.utils.validation import validate_email, validate_username


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Role(StrEnum):
    """Coarse-grained permission tier."""
    ADMIN = "Admin"
    MANAGER = "Manager"
    USER = "User"


class ProjectStatus(StrEnum):
    """Project lifecycle status."""
    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TaskStatus(StrEnum):
    """Task workflow status.

    The workflow is linear in practice but any authorized actor may set any
    status.
    """
    NOT_ASSIGNED = "NotAssigned"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    TESTED = "Tested"
    CLOSED = "Closed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.TESTED, TaskStatus.CLOSED}
)


class TaskPriority(StrEnum):
    """Task priority."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class HistoryField(StrEnum):
    """Field names recorded in the task history trail."""
    CREATED = "Created"
    TITLE = "Title"
    STATUS = "Status"
    PRIORITY = "Priority"
    ASSIGNED_TO = "AssignedTo"


UNASSIGNED = "Unassigned"


class _UtcDates(BaseModel):
    """Normalises client-supplied schedule dates to aware UTC.

    Naive values are taken to be UTC; aware values are converted.
    """

    @field_validator("start_date", "end_date", "due_date", "completed_date", check_fields=False)
    @classmethod
    def _to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class User(BaseModel):
    """Immutable user entity.

    ``is_active`` is the soft-delete flag; inactive users keep their
    username and email reserved.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = Field(default=None, description="Repository-assigned id")
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    password_hash: str = Field(..., min_length=1, max_length=500, repr=False)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: Role = Field(default=Role.USER)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: int | None = Field(default=None, description="Id of the creating user")

    def to_profile(self) -> UserProfile:
        """Return the public projection of this user (no password hash)."""
        return UserProfile.model_validate(self.model_dump(exclude={"password_hash"}))


class Project(_UtcDates):
    """Immutable project entity owned by exactly one manager."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    manager_id: int
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProjectUser(BaseModel):
    """Membership of a role-"User" user in a project."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    project_id: int
    user_id: int
    assigned_date: datetime = Field(default_factory=utcnow)


class TaskItem(_UtcDates):
    """Immutable task entity."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    project_id: int
    assigned_to_id: int | None = None
    assigned_by_id: int
    status: TaskStatus = TaskStatus.NOT_ASSIGNED
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=10000)
    actual_hours: Decimal = Field(default=Decimal("0"), ge=0)
    start_date: datetime | None = None
    due_date: datetime | None = None
    completed_date: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TaskHistory(BaseModel):
    """Append-only audit record for one changed field of a task."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    task_id: int
    changed_by_id: int
    field_name: str = Field(..., min_length=1, max_length=100)
    old_value: str | None = Field(default=None, max_length=500)
    new_value: str | None = Field(default=None, max_length=500)
    comment: str | None = None
    changed_at: datetime = Field(default_factory=utcnow)


class RefreshToken(BaseModel):
    """Persisted opaque refresh token.  Revoked, never deleted."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    user_id: int
    token: str = Field(..., min_length=1, max_length=500, repr=False)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    revoked_at: datetime | None = None
    is_revoked: bool = False

    def is_active(self, at: datetime | None = None) -> bool:
        """Return True if the token is neither revoked nor expired."""
        return not self.is_revoked and (at or utcnow()) < self.expires_at


class Actor(BaseModel):
    """The authenticated caller, passed explicitly into every core operation."""

    model_config = ConfigDict(frozen=True)

    id: int
    role: Role
    username: str = ""


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class _UserFields(BaseModel):

    @field_validator("username", check_fields=False)
    @classmethod
    def _check_username(cls, v: str | None) -> str | None:
        if v is not None and not validate_username(v):
            raise ValueError("username may contain letters, digits, '.', '_' and '-' only")
        return v

    @field_validator("email", check_fields=False)
    @classmethod
    def _check_email(cls, v: str | None) -> str | None:
        if v is not None and not validate_email(v):
            raise ValueError("invalid email address")
        return v


class UserCreate(_UserFields):
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.USER


class UserUpdate(_UserFields):
    """Partial user update; omitted fields keep their stored value.

    A blank password is treated as "unchanged".
    """

    username: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, max_length=100)
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    role: Role | None = None

    @field_validator("password")
    @classmethod
    def _check_password(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if len(v) < 6:
            raise ValueError("password must be at least 6 characters")
        return v


class ProjectCreate(_UtcDates):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    manager_id: int | None = None


class ProjectUpdate(_UtcDates):
    """Partial project update; only explicitly supplied fields are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: ProjectStatus | None = None
    manager_id: int | None = None


class ProjectMembersUpdate(BaseModel):
    user_ids: list[int] = Field(default_factory=list)


class TaskCreate(_UtcDates):
    """Task creation payload.

    ``status`` is accepted for compatibility but ignored: a new task is
    ``Assigned`` when it has an assignee and ``NotAssigned`` otherwise.
    """

    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    project_id: int
    assigned_to_id: int | None = None
    status: TaskStatus | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=10000)
    start_date: datetime | None = None
    due_date: datetime | None = None


class TaskUpdate(_UtcDates):
    """Partial task update; only explicitly supplied fields are applied.

    Sending ``assigned_to_id: null`` unassigns the task.
    """

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    assigned_to_id: int | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=10000)
    start_date: datetime | None = None
    due_date: datetime | None = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus
    actual_hours: Decimal | None = Field(default=None, ge=0)
    comment: str | None = None


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, repr=False)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class UserProfile(BaseModel):
    """Public projection of a user."""

    model_config = ConfigDict(frozen=True)

    id: int | None
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    created_at: datetime


class ProjectView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None
    name: str
    description: str | None
    start_date: datetime | None
    end_date: datetime | None
    status: ProjectStatus
    manager_id: int
    manager: UserProfile | None = None
    assigned_users: list[UserProfile] = Field(default_factory=list)
    task_count: int = 0
    completed_task_count: int = 0
    created_at: datetime


class TaskView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None
    title: str
    description: str | None
    project_id: int
    project_name: str | None = None
    assigned_to_id: int | None
    assigned_to: UserProfile | None = None
    assigned_by_id: int
    assigned_by: UserProfile | None = None
    status: TaskStatus
    priority: TaskPriority
    estimated_hours: Decimal | None
    actual_hours: Decimal
    start_date: datetime | None
    due_date: datetime | None
    completed_date: datetime | None
    created_at: datetime
    updated_at: datetime


class TaskHistoryView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None
    field_name: str
    old_value: str | None
    new_value: str | None
    comment: str | None
    changed_at: datetime
    changed_by: UserProfile | None = None


class TaskDetail(TaskView):
    history: list[TaskHistoryView] = Field(default_factory=list)


class TokenPair(BaseModel):
    """Token payload issued on login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserProfile


class ProjectTaskSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: int
    project_name: str
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    completion_percentage: float = 0.0


class Dashboard(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_projects: int = 0
    active_projects: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    overdue_tasks: int = 0
    total_users: int = 0
    active_users: int = 0
    project_summaries: list[ProjectTaskSummary] = Field(default_factory=list)
    recent_tasks: list[TaskView] = Field(default_factory=list)
    upcoming_deadlines: list[TaskView] = Field(default_factory=list)


__all__ = [
    "TERMINAL_TASK_STATUSES",
    "UNASSIGNED",
    "Actor",
    "Dashboard",
    "HistoryField",
    "LoginRequest",
    "Project",
    "ProjectCreate",
    "ProjectMembersUpdate",
    "ProjectStatus",
    "ProjectTaskSummary",
    "ProjectUpdate",
    "ProjectUser",
    "ProjectView",
    "RefreshRequest",
    "RefreshToken",
    "Role",
    "TaskCreate",
    "TaskDetail",
    "TaskHistory",
    "TaskHistoryView",
    "TaskItem",
    "TaskPriority",
    "TaskStatus",
    "TaskStatusUpdate",
    "TaskUpdate",
    "TaskView",
    "TokenPair",
    "User",
    "UserCreate",
    "UserProfile",
    "UserUpdate",
    "utcnow",
]
