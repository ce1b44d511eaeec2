"""Unit tests for the change notification buses."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from amora.errors import RemoteOperationError
from amora.services.change_bus import LocalChangeBus, RedisChangeBus
from amora.services.document_store import DocumentStore, Query
from amora.utils.parsing import parse_message


class TestLocalChangeBus:
    """In-process fan-out."""

    @pytest.mark.asyncio
    async def test_publish_reaches_collection_listeners_only(self):
        bus = LocalChangeBus()
        seen = []
        bus.subscribe("users", seen.append)
        bus.subscribe("likes", lambda c: seen.append("wrong"))

        await bus.publish("users")

        assert seen == ["users"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = LocalChangeBus()
        seen = []
        unsubscribe = bus.subscribe("users", seen.append)
        unsubscribe()
        unsubscribe()

        await bus.publish("users")

        assert seen == []
        assert bus.listener_count("users") == 0

    @pytest.mark.asyncio
    async def test_listener_may_unsubscribe_during_dispatch(self):
        bus = LocalChangeBus()
        seen = []
        holder = {}

        def once(collection):
            seen.append(collection)
            holder["unsubscribe"]()

        holder["unsubscribe"] = bus.subscribe("users", once)
        await bus.publish("users")
        await bus.publish("users")

        assert seen == ["users"]


class _FakePubSub:
    def __init__(self):
        self.queue = asyncio.Queue()
        self.psubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class TestRedisChangeBus:
    """Pub/sub routing with a stubbed redis client."""

    def _client(self, pubsub):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.pubsub = MagicMock(return_value=pubsub)
        client.aclose = AsyncMock()

        async def publish(channel, payload):
            await pubsub.queue.put({"type": "pmessage", "channel": channel, "data": payload})
            return 1

        client.publish = AsyncMock(side_effect=publish)
        return client

    @pytest.mark.asyncio
    async def test_publish_round_trips_through_redis(self, wait_until):
        pubsub = _FakePubSub()
        client = self._client(pubsub)
        bus = RedisChangeBus(client, channel_prefix="test:changes")
        seen = []
        bus.subscribe("chats/a_b/messages", seen.append)

        await bus.start()
        pubsub.psubscribe.assert_awaited_once_with("test:changes:*")

        await bus.publish("chats/a_b/messages")
        client.publish.assert_awaited_once_with("test:changes:chats/a_b/messages", "chats/a_b/messages")
        await wait_until(lambda: seen)
        assert seen == ["chats/a_b/messages"]

        await bus.close()
        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_pattern_messages_ignored(self, wait_until):
        pubsub = _FakePubSub()
        bus = RedisChangeBus(self._client(pubsub), channel_prefix="p")
        seen = []
        bus.subscribe("users", seen.append)
        await bus.start()

        await pubsub.queue.put({"type": "psubscribe", "channel": "p:*", "data": 1})
        await pubsub.queue.put({"type": "pmessage", "channel": "p:users", "data": "users"})
        await wait_until(lambda: seen)

        assert seen == ["users"]
        await bus.close()

    @pytest.mark.asyncio
    async def test_start_failure_is_remote_error(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        bus = RedisChangeBus(client)

        with pytest.raises(RemoteOperationError):
            await bus.start()

    @pytest.mark.asyncio
    async def test_publish_failure_is_remote_error(self):
        client = MagicMock()
        client.publish = AsyncMock(side_effect=RedisConnectionError("gone"))
        bus = RedisChangeBus(client)

        with pytest.raises(RemoteOperationError):
            await bus.publish("users")

    @pytest.mark.asyncio
    async def test_lost_subscription_reported_once_per_subscriber(self, wait_until):
        pubsub = _FakePubSub()
        bus = RedisChangeBus(self._client(pubsub), channel_prefix="p")
        failures = []
        bus.subscribe("users", failures.append, on_failure=failures.append)
        unsubscribe = bus.subscribe("likes", failures.append, on_failure=lambda e: failures.append("gone"))
        unsubscribe()
        await bus.start()

        await pubsub.queue.put(RedisConnectionError("connection reset"))
        await wait_until(lambda: bus.failure is not None)

        assert len(failures) == 1
        assert isinstance(failures[0], RemoteOperationError)
        assert bus.failure is failures[0]

        late = []
        bus.subscribe("users", late.append, on_failure=late.append)
        assert late == [bus.failure]
        await bus.close()

    @pytest.mark.asyncio
    async def test_ended_subscription_is_a_failure(self, wait_until):
        pubsub = _FakePubSub()
        bus = RedisChangeBus(self._client(pubsub), channel_prefix="p")
        failures = []
        bus.subscribe("users", lambda c: None, on_failure=failures.append)
        await bus.start()

        await pubsub.queue.put(None)
        await wait_until(lambda: failures)

        assert isinstance(failures[0], RemoteOperationError)
        await bus.close()

    @pytest.mark.asyncio
    async def test_close_is_not_a_failure(self):
        pubsub = _FakePubSub()
        bus = RedisChangeBus(self._client(pubsub), channel_prefix="p")
        failures = []
        bus.subscribe("users", lambda c: None, on_failure=failures.append)
        await bus.start()

        await bus.close()

        assert failures == []
        assert bus.failure is None

    @pytest.mark.asyncio
    async def test_live_query_stops_when_subscription_lost(self, session_factory, wait_until):
        pubsub = _FakePubSub()
        bus = RedisChangeBus(self._client(pubsub), channel_prefix="p")
        await bus.start()
        store = DocumentStore(session_factory, bus)
        snapshots, errors = [], []
        feed = store.watch(Query("notes"), parse_message, snapshots.append, on_error=errors.append)
        await wait_until(lambda: snapshots)

        await pubsub.queue.put(RedisConnectionError("connection reset"))
        await feed.wait_closed()

        assert len(errors) == 1
        assert isinstance(errors[0], RemoteOperationError)
        assert feed.error is errors[0]
        assert feed.active is False
        assert bus.listener_count("notes") == 0
        assert len(snapshots) == 1
        await bus.close()
