"""FastAPI dependency-injection helpers.

Route handlers receive the :class:`~taskmanager.manager.AppManager` (and
through it the services) plus the authenticated
:class:`~taskmanager.core.types.Actor`, built from the bearer access token.
"""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from taskmanager.core.exceptions import UnauthorizedError
from taskmanager.core.types import Actor
from taskmanager.manager import AppManager

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_manager(request: Request) -> AppManager:
    """Return the initialised :class:`AppManager` stored on ``app.state``."""
    manager = getattr(request.app.state, "app_manager", None)
    if manager is None:
        raise RuntimeError(
            "app_manager not found on app.state. "
            "Did you forget to use AppManager.create_lifespan()?"
        )
    return manager


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    manager: Annotated[AppManager, Depends(get_app_manager)],
) -> Actor:
    """Validate the bearer access token and return the caller.

    Example
    -------
    .. code-block:: python

        @router.get("/things")
        async def list_things(actor: Annotated[Actor, Depends(get_current_actor)]):
            ...
    """
    if credentials is None:
        raise UnauthorizedError()
    return manager.tokens.actor_from_token(credentials.credentials)


ManagerDep = Annotated[AppManager, Depends(get_app_manager)]
ActorDep = Annotated[Actor, Depends(get_current_actor)]


__all__ = [
    "ActorDep",
    "ManagerDep",
    "bearer_scheme",
    "get_app_manager",
    "get_current_actor",
]
