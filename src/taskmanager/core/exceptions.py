"""Custom exceptions for taskmanager.

All exceptions derive from :class:`TaskManagerError` so callers can catch the
entire family with a single ``except TaskManagerError`` clause.  The transport
layer maps each kind onto one HTTP status code.

Hierarchy::

    TaskManagerError
    ├── NotFoundError
    ├── ForbiddenError
    ├── UnauthorizedError
    │   ├── InvalidCredentialsError
    │   └── InvalidTokenError
    ├── ConflictError
    ├── InvalidOperationError
    ├── PersistenceError
    └── ConfigurationError
"""

from __future__ import annotations

from typing import Any


class TaskManagerError(Exception):
    """Base exception for all taskmanager errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"


class NotFoundError(TaskManagerError):
    """Raised when an entity id is absent from the repository."""

    def __init__(
        self,
        entity: str,
        identifier: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = (
            f"{entity} not found: {identifier!r}" if identifier is not None else f"{entity} not found"
        )
        super().__init__(message, details)
        self.entity = entity
        self.identifier = identifier


class ForbiddenError(TaskManagerError):
    """Raised when an authenticated actor is denied by the access policy."""

    def __init__(
        self,
        reason: str = "Access denied",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason, details)
        self.reason = reason


class UnauthorizedError(TaskManagerError):
    """Raised for a missing, invalid or expired credential."""

    def __init__(
        self,
        reason: str = "Not authenticated",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason, details)
        self.reason = reason


class InvalidCredentialsError(UnauthorizedError):
    """Raised when a login fails.

    The message is identical whether the username exists or the password is
    wrong.
    """

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__("Invalid username or password", details)


class InvalidTokenError(UnauthorizedError):
    """Raised when a refresh token is unknown, expired or revoked."""

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__("Invalid or expired refresh token", details)


class ConflictError(TaskManagerError):
    """Raised on a uniqueness violation (username, email, membership)."""

    def __init__(
        self,
        field: str,
        value: Any,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{field} already exists: {value!r}", details)
        self.field = field
        self.value = value


class InvalidOperationError(TaskManagerError):
    """Raised when a request is well-formed but violates a domain rule.

    Examples: deleting yourself, deleting an Admin, assigning a task to a user
    who is not a member of the project.
    """

    def __init__(
        self,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason, details)
        self.reason = reason


class PersistenceError(TaskManagerError):
    """Raised when the storage backend fails unexpectedly."""

    def __init__(
        self,
        operation: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Persistence operation {operation!r} failed: {reason}", details)
        self.operation = operation
        self.reason = reason


class ConfigurationError(TaskManagerError):
    """Raised when :class:`~taskmanager.core.config.TaskManagerConfig` contains an invalid value."""

    def __init__(
        self,
        parameter: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Invalid configuration for {parameter!r}: {reason}", details)
        self.parameter = parameter
        self.reason = reason


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "ForbiddenError",
    "InvalidCredentialsError",
    "InvalidOperationError",
    "InvalidTokenError",
    "NotFoundError",
    "PersistenceError",
    "TaskManagerError",
    "UnauthorizedError",
]
