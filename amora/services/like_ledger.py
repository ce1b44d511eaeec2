"""
Amora — Like Ledger

One ``likes`` document per swiper, mapping target id -> bool (True = liked,
False = passed).  A later verdict on the same target overwrites the earlier
one.  A "liked" verdict runs the Match Detector before returning; a pass
returns straight away.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import structlog

from amora.errors import ValidationError
from amora.schemas.match import VerdictResult
from amora.services.document_store import DocumentStore
from amora.services.match_detector import NO_MATCH, MatchDetector
from amora.services.match_registry import MatchRegistry
from amora.utils.serialization import utcnow

logger = structlog.get_logger("amora.like_ledger")

LIKES = "likes"


class LikeLedger:
    def __init__(
        self,
        store: DocumentStore,
        registry: MatchRegistry,
        clock: Callable[[], datetime] = utcnow,
        strict_matching: bool = False,
    ) -> None:
        self.store = store
        self.detector = MatchDetector(self, registry, clock=clock, strict=strict_matching)

    async def record_verdict(self, swiper_id: str, target_id: str, liked: bool) -> VerdictResult:
        """Upsert ``target_id -> liked`` into the swiper's ledger."""
        if swiper_id == target_id:
            raise ValidationError("Users cannot swipe on themselves.")

        await self.store.set(LIKES, swiper_id, {target_id: bool(liked)}, merge=True)
        logger.info("verdict_recorded", swiper_id=swiper_id, target_id=target_id, liked=liked)

        if not liked:
            return NO_MATCH
        return await self.detector.on_like(swiper_id, target_id)

    async def get_verdict(self, owner_id: str, target_id: str) -> Optional[bool]:
        """The stored verdict, or None when *owner_id* never swiped on *target_id*."""
        snapshot = await self.store.get(LIKES, owner_id)
        if snapshot is None:
            return None
        value = snapshot.data.get(target_id)
        if value is None or isinstance(value, bool):
            return value
        logger.warning(
            "ledger_entry_malformed",
            owner_id=owner_id,
            target_id=target_id,
            value_type=type(value).__name__,
        )
        return None
