"""
Amora — Match Detector

Decides, on a new "liked" verdict, whether a mutual match now exists:

  1. Read the target's ledger entry for the swiper.
  2. Absent or False  -> no match.
  3. True             -> create Match(participants=sorted pair, matchedAt=now).

Only the target's prior verdict is consulted, so a match is discovered by
whichever user swipes second.  The read and the create are independent
operations: two concurrent mutual swipes can both miss the match or both
create one.

Strict mode (``STRICT_MATCHING``) is an opt-in deviation: detection for a pair
is serialised with an in-process lock and an existing Match for the pair is
returned instead of creating a duplicate.  It does not coordinate across
processes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable

import structlog

from amora.schemas.match import VerdictResult
from amora.services.match_registry import MatchRegistry
from amora.utils.serialization import utcnow

logger = structlog.get_logger("amora.match_detector")

NO_MATCH = VerdictResult(is_match=False)


class MatchDetector:
    def __init__(
        self,
        ledger,
        registry: MatchRegistry,
        clock: Callable[[], datetime] = utcnow,
        strict: bool = False,
    ) -> None:
        self.ledger = ledger
        self.registry = registry
        self.clock = clock
        self.strict = strict
        self._pair_locks: dict[tuple[str, ...], asyncio.Lock] = {}
        self._pair_waiters: dict[tuple[str, ...], int] = {}

    async def on_like(self, swiper_id: str, target_id: str) -> VerdictResult:
        if not self.strict:
            return await self._detect(swiper_id, target_id)

        pair = tuple(sorted((swiper_id, target_id)))
        lock = self._pair_locks.setdefault(pair, asyncio.Lock())
        self._pair_waiters[pair] = self._pair_waiters.get(pair, 0) + 1
        try:
            async with lock:
                return await self._detect(swiper_id, target_id)
        finally:
            self._pair_waiters[pair] -= 1
            if not self._pair_waiters[pair]:
                del self._pair_waiters[pair]
                del self._pair_locks[pair]

    async def _detect(self, swiper_id: str, target_id: str) -> VerdictResult:
        log = logger.bind(swiper_id=swiper_id, target_id=target_id)

        reciprocal = await self.ledger.get_verdict(target_id, swiper_id)
        if reciprocal is not True:
            log.info("no_mutual_like", reciprocal=reciprocal)
            return NO_MATCH

        participants = sorted([swiper_id, target_id])

        if self.strict:
            existing = await self.registry.find_for_pair(participants)
            if existing:
                log.info("match_already_exists", match_id=existing[0].id)
                return VerdictResult(is_match=True, match=existing[0])

        match = await self.registry.create(participants, self.clock())
        log.info("mutual_like_confirmed", match_id=match.id)
        return VerdictResult(is_match=True, match=match)
