"""
Amora — Users API

Profile reads and owner-only profile updates, plus the swipe-deck candidate
list.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request

from amora.api.deps import Services, get_current_identity, get_services
from amora.schemas.auth import Identity
from amora.schemas.user import AppUser, DisplayNameUpdate

logger = structlog.get_logger("amora.api.users")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /me — Current user's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/me", response_model=AppUser, summary="Get the signed-in user")
async def get_me(
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> AppUser:
    return await services.directory.require(identity.uid)


# ──────────────────────────────────────────────────────────────────────────────
# GET /candidates — Swipe deck
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/candidates",
    response_model=list[AppUser],
    summary="List swipe candidates",
)
async def list_candidates(
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> list[AppUser]:
    """Every other user in the directory.  Ordering for display is up to the
    client."""
    candidates = await services.directory.list_candidates(identity.uid)
    logger.info("list_candidates", user_id=identity.uid, count=len(candidates))
    return candidates


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Another participant's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=AppUser, summary="Get user by ID")
async def get_user(
    user_id: str,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> AppUser:
    return await services.directory.require(user_id)


# ──────────────────────────────────────────────────────────────────────────────
# PUT /me/display-name, PUT /me/profile-image — Owner updates
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/me/display-name",
    response_model=AppUser,
    summary="Change the display name",
)
async def update_display_name(
    payload: DisplayNameUpdate,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> AppUser:
    await services.directory.update_display_name(identity.uid, payload.display_name)
    return await services.directory.require(identity.uid)


@router.put(
    "/me/profile-image",
    response_model=AppUser,
    summary="Replace the profile image",
)
async def update_profile_image(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> AppUser:
    """Stores the raw request body as base64.  No size or format checks."""
    image = await request.body()
    await services.directory.update_profile_image(identity.uid, image)
    return await services.directory.require(identity.uid)
