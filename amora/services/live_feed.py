"""
Amora — Live queries.

A ``LiveQuery`` re-runs its query whenever the change bus reports a write to
the watched collection and delivers the *full* parsed result set to the
subscriber's handler.  Notifications that arrive while a delivery is in
flight are coalesced into one re-run.

Contract:
  * The first snapshot is delivered right after ``start()``.
  * Handlers (sync or async) run on the event loop that called ``start()``,
    one delivery at a time.
  * The first error (a query failure, a handler exception or a lost change
    bus subscription) is reported once to ``on_error`` and the feed stops.
    Reconnecting is the caller's job.
  * ``cancel()`` stops delivery and detaches from the bus; a cancelled feed
    cannot be restarted, but a new one can always be created.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

from amora.utils.parsing import ParseError, Parser, partition

logger = structlog.get_logger("amora.live_feed")

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    items: list[T]
    discarded: list[ParseError] = field(default_factory=list)


async def fetch_snapshot(store, query, parser: Parser) -> Snapshot:
    """Run *query* once and parse every document."""
    documents = await store.query(query)
    items, discarded = partition(parser(doc.collection, doc.id, doc.data) for doc in documents)
    return Snapshot(items=items, discarded=discarded)


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class LiveQuery(Generic[T]):
    """Push-based, cancellable subscription to one query."""

    def __init__(
        self,
        store,
        query,
        parser: Parser,
        handler: Callable[[Snapshot], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> None:
        self.query = query
        self._store = store
        self._parser = parser
        self._handler = handler
        self._on_error = on_error
        self._changed = asyncio.Event()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._failure: Optional[Exception] = None
        self.error: Optional[Exception] = None
        self.deliveries = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> None:
        if self._task is not None or self._cancelled:
            raise RuntimeError("LiveQuery can only be started once")
        self._unsubscribe = self._store.bus.subscribe(
            self.query.collection, self._notify, on_failure=self._fail
        )
        self._changed.set()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("feed_started", collection=self.query.collection)

    def _notify(self, _collection: str) -> None:
        if not self._cancelled:
            self._changed.set()

    def _fail(self, exc: Exception) -> None:
        if not self._cancelled:
            self._failure = exc
            self._changed.set()

    async def _run(self) -> None:
        try:
            while True:
                await self._changed.wait()
                self._changed.clear()
                if self._failure is not None:
                    raise self._failure
                snapshot = await fetch_snapshot(self._store, self.query, self._parser)
                if self._cancelled:
                    return
                await _call(self._handler, snapshot)
                self.deliveries += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.error = exc
            self._detach()
            logger.warning(
                "feed_error",
                collection=self.query.collection,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if self._on_error is not None:
                await _call(self._on_error, exc)

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def cancel(self) -> None:
        """Stop delivery and release the bus subscription and consumer task."""
        if self._cancelled:
            return
        self._cancelled = True
        self._detach()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("feed_cancelled", collection=self.query.collection)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
