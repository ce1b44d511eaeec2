"""
Amora — Match Registry & session-owned Match Feed

Matches live in the ``matches`` collection under store-generated ids.  No
uniqueness check is made on create, so a pair can end up with more than one
Match when both users swipe concurrently.

``MatchFeed`` replaces a process-wide listener manager: each client session
constructs its own and it holds at most one live subscription at a time.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

import structlog

from amora.errors import ValidationError
from amora.schemas.match import Match
from amora.services.document_store import DocumentStore, Query
from amora.services.live_feed import LiveQuery, Snapshot, fetch_snapshot
from amora.utils.parsing import parse_match

logger = structlog.get_logger("amora.match_registry")

MATCHES = "matches"


def matches_for_user_query(user_id: str) -> Query:
    return (
        Query(MATCHES)
        .where_array_contains("participants", user_id)
        .order("matchedAt", descending=True)
    )


class MatchRegistry:
    """Durable set of Match entities."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create(self, participants: Sequence[str], matched_at: datetime) -> Match:
        if len(participants) != 2:
            raise ValidationError("A match needs exactly two participants.")
        pair = list(participants)
        match_id = await self.store.add(
            MATCHES, {"participants": pair, "matchedAt": matched_at}
        )
        logger.info("match_created", match_id=match_id, participants=pair)
        return Match(id=match_id, participants=pair, matched_at=matched_at)

    async def find_for_pair(self, participants: Sequence[str]) -> list[Match]:
        pair = sorted(participants)
        snapshot = await self.matches_for_user(pair[0])
        return [m for m in snapshot.items if sorted(m.participants) == pair]

    async def matches_for_user(self, user_id: str) -> Snapshot[Match]:
        """One-shot read of what the live feed would currently deliver."""
        return await fetch_snapshot(self.store, matches_for_user_query(user_id), parse_match)

    def live_feed_for_user(
        self,
        user_id: str,
        handler: Callable[[Snapshot], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> LiveQuery:
        """Matches containing *user_id*, newest first, re-delivered on every change."""
        return self.store.watch(matches_for_user_query(user_id), parse_match, handler, on_error)


class MatchFeed:
    """Holds the current match list for one client session."""

    def __init__(
        self,
        registry: MatchRegistry,
        on_update: Optional[Callable[[Snapshot], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> None:
        self.registry = registry
        self.matches: list[Match] = []
        self.user_id: Optional[str] = None
        self.last_error: Optional[Exception] = None
        self._on_update = on_update
        self._on_error = on_error
        self._subscription: Optional[LiveQuery] = None

    @property
    def listening(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start_listening(self, user_id: str) -> None:
        """Subscribe to *user_id*'s matches, cancelling any prior subscription first."""
        self.stop_listening()
        self.user_id = user_id
        self.last_error = None
        self._subscription = self.registry.live_feed_for_user(
            user_id, self._handle_snapshot, on_error=self._handle_error
        )
        logger.info("match_feed_started", user_id=user_id)

    def stop_listening(self) -> None:
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        logger.info("match_feed_stopped", user_id=self.user_id)

    async def _handle_snapshot(self, snapshot: Snapshot) -> None:
        self.matches = list(snapshot.items)
        if self._on_update is not None:
            result = self._on_update(snapshot)
            if inspect.isawaitable(result):
                await result

    async def _handle_error(self, exc: Exception) -> None:
        self.last_error = exc
        logger.warning("match_feed_error", user_id=self.user_id, error=str(exc))
        if self._on_error is not None:
            result = self._on_error(exc)
            if inspect.isawaitable(result):
                await result
