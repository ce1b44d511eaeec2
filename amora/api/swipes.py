"""
Amora — Swipes API

A swipe records a verdict in the caller's like ledger.  A right swipe also
runs match detection and reports whether it produced a match.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from amora.api.deps import Services, get_current_identity, get_services
from amora.schemas.auth import Identity
from amora.schemas.match import SwipeCreate, VerdictResult

logger = structlog.get_logger("amora.api.swipes")

router = APIRouter()


@router.post(
    "/",
    response_model=VerdictResult,
    status_code=status.HTTP_201_CREATED,
    summary="Record a like or a pass",
)
async def record_swipe(
    payload: SwipeCreate,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> VerdictResult:
    log = logger.bind(swiper_id=identity.uid, target_id=payload.target_id)
    log.info("record_swipe_start", liked=payload.liked)

    result = await services.ledger.record_verdict(identity.uid, payload.target_id, payload.liked)

    log.info("record_swipe_complete", is_match=result.is_match)
    return result
