"""
Amora — Matches API

One-shot read of the caller's matches, newest first.  Clients that want
updates use the ``/ws/matches`` live feed instead.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from amora.api.deps import Services, get_current_identity, get_services
from amora.schemas.auth import Identity
from amora.schemas.match import Match

logger = structlog.get_logger("amora.api.matches")

router = APIRouter()


@router.get(
    "/",
    response_model=list[Match],
    summary="List the signed-in user's matches",
)
async def list_matches(
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> list[Match]:
    snapshot = await services.registry.matches_for_user(identity.uid)
    logger.info(
        "list_matches",
        user_id=identity.uid,
        count=len(snapshot.items),
        discarded=len(snapshot.discarded),
    )
    return snapshot.items
