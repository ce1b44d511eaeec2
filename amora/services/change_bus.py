"""
Amora — Change notification bus for live queries.

Every committed write to a collection publishes the collection name.  Live
queries subscribe per collection and re-run their query when notified.

``LocalChangeBus`` delivers in-process.  ``RedisChangeBus`` routes every
publish through Redis pub/sub so that all API workers attached to the same
database see each other's writes; delivery to local listeners only happens
when the message comes back from Redis, so one code path serves both.
If the Redis subscription drops, every subscriber's failure callback is
called once with a ``RemoteOperationError``; the bus does not reconnect.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Callable

import structlog

from amora.errors import RemoteOperationError

logger = structlog.get_logger("amora.change_bus")

Listener = Callable[[str], None]
FailureListener = Callable[[Exception], None]


class LocalChangeBus:
    """In-process fan-out of collection change notifications."""

    def __init__(self) -> None:
        self._listeners: dict[str, set[Listener]] = defaultdict(set)
        self._failure_listeners: set[FailureListener] = set()
        self.failure: Exception | None = None

    def subscribe(
        self,
        collection: str,
        listener: Listener,
        on_failure: FailureListener | None = None,
    ) -> Callable[[], None]:
        """Register *listener* for *collection*; returns the unsubscribe callable.

        *on_failure* is called once if the bus stops delivering, immediately
        when it already has.
        """
        self._listeners[collection].add(listener)
        if on_failure is not None:
            if self.failure is not None:
                on_failure(self.failure)
            else:
                self._failure_listeners.add(on_failure)

        def _unsubscribe() -> None:
            if on_failure is not None:
                self._failure_listeners.discard(on_failure)
            listeners = self._listeners.get(collection)
            if listeners is None:
                return
            listeners.discard(listener)
            if not listeners:
                self._listeners.pop(collection, None)

        return _unsubscribe

    def listener_count(self, collection: str) -> int:
        return len(self._listeners.get(collection, ()))

    async def publish(self, collection: str) -> None:
        self._dispatch(collection)

    def _dispatch(self, collection: str) -> None:
        for listener in list(self._listeners.get(collection, ())):
            listener(collection)

    def _fail(self, exc: Exception) -> None:
        self.failure = exc
        listeners = list(self._failure_listeners)
        self._failure_listeners.clear()
        for on_failure in listeners:
            on_failure(exc)

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        self._listeners.clear()
        self._failure_listeners.clear()


class RedisChangeBus(LocalChangeBus):
    """Change bus backed by Redis pub/sub (``redis.asyncio``)."""

    def __init__(self, client, channel_prefix: str = "amora:changes") -> None:
        super().__init__()
        self._client = client
        self._prefix = channel_prefix
        self._pubsub = None
        self._reader: asyncio.Task | None = None

    @classmethod
    def from_url(cls, url: str, channel_prefix: str = "amora:changes") -> "RedisChangeBus":
        import redis.asyncio as aioredis

        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        return cls(client, channel_prefix)

    @property
    def client(self):
        return self._client

    def _channel(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    async def start(self) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.psubscribe(f"{self._prefix}:*")
        except RedisError as exc:
            raise RemoteOperationError(f"Redis unavailable: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("redis_change_bus_started", prefix=self._prefix)

    async def _read_loop(self) -> None:
        from redis.exceptions import RedisError

        prefix_len = len(self._prefix) + 1
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                channel = message["channel"]
                self._dispatch(channel[prefix_len:])
        except (RedisError, OSError) as exc:
            logger.error("change_bus_failed", prefix=self._prefix, error=str(exc))
            self._fail(RemoteOperationError(f"Change subscription lost: {exc}"))
            return
        # close() cancels this task, so reaching here means the stream ended
        logger.error("change_bus_failed", prefix=self._prefix, error="subscription ended")
        self._fail(RemoteOperationError("Change subscription ended"))

    async def publish(self, collection: str) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.publish(self._channel(collection), collection)
        except RedisError as exc:
            raise RemoteOperationError(f"Change notification failed: {exc}") from exc

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        await self._client.aclose()
        await super().close()
        logger.info("redis_change_bus_closed")
