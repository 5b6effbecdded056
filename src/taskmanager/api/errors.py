"""Translate taskmanager exceptions into JSON error responses.

Body shape::

    {"error": "not_found", "message": "Task not found: 7"}

``details`` is added when the exception carries any.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import status
from fastapi.responses import JSONResponse

from taskmanager.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    TaskManagerError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_MAP: tuple[tuple[type[TaskManagerError], int, str], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ForbiddenError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED, "unauthorized"),
    (ConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (InvalidOperationError, status.HTTP_400_BAD_REQUEST, "invalid_operation"),
)


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"error": error, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def handle_taskmanager_error(_request: Request, exc: TaskManagerError) -> JSONResponse:
    for exc_type, status_code, error in _STATUS_MAP:
        if isinstance(exc, exc_type):
            headers = (
                {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
            )
            return error_response(status_code, error, exc.message, exc.details, headers)

    # PersistenceError, ConfigurationError and anything unexpected
    logger.error("Unhandled taskmanager error: %s", exc.message, exc_info=exc)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An internal error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskManagerError, handle_taskmanager_error)  # type: ignore[arg-type]


__all__ = ["error_response", "handle_taskmanager_error", "register_exception_handlers"]
