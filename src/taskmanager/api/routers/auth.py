"""Authentication endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from taskmanager.core.types import LoginRequest, RefreshRequest, TokenPair, UserProfile
from taskmanager.dependencies import ActorDep, ManagerDep

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/login", response_model=TokenPair)
async def login(payload: LoginRequest, manager: ManagerDep) -> TokenPair:
    return await manager.auth.login(payload.username, payload.password)


@router.post("/refresh", response_model=TokenPair)
async def refresh(payload: RefreshRequest, manager: ManagerDep) -> TokenPair:
    """Exchange a refresh token for a new pair.  The presented token is consumed."""
    return await manager.auth.refresh(payload.refresh_token)


@router.post("/logout")
async def logout(actor: ActorDep, manager: ManagerDep) -> dict[str, Any]:
    """Revoke every refresh token of the caller."""
    revoked = await manager.auth.logout(actor.id)
    return {"message": "Logged out successfully", "revoked": revoked}


@router.post("/revoke")
async def revoke(payload: RefreshRequest, _actor: ActorDep, manager: ManagerDep) -> dict[str, bool]:
    return {"revoked": await manager.auth.revoke_token(payload.refresh_token)}


@router.get("/me", response_model=UserProfile)
async def me(actor: ActorDep, manager: ManagerDep) -> UserProfile:
    return await manager.auth.get_profile(actor)
