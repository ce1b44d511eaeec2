"""Unit tests for MatchRegistry and the session-owned MatchFeed."""
from datetime import datetime, timedelta, timezone

import pytest

from amora.errors import ValidationError
from amora.services.match_registry import MatchFeed


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestCreate:
    """Match creation."""

    @pytest.mark.asyncio
    async def test_create_returns_match(self, registry, user_a, user_b):
        match = await registry.create([user_a, user_b], T0)
        assert match.id
        assert match.participants == [user_a, user_b]
        assert match.matched_at == T0
        assert match.other_participant(user_a) == user_b

    @pytest.mark.asyncio
    async def test_requires_two_participants(self, registry, user_a):
        with pytest.raises(ValidationError):
            await registry.create([user_a], T0)

    @pytest.mark.asyncio
    async def test_stored_timestamp_is_parsed_back(self, registry, user_a, user_b):
        await registry.create([user_a, user_b], T0)
        snapshot = await registry.matches_for_user(user_b)
        assert snapshot.items[0].matched_at == T0


class TestMatchesForUser:
    """Filtering and ordering."""

    @pytest.mark.asyncio
    async def test_newest_first(self, registry, user_a, user_b, user_c):
        older = await registry.create([user_a, user_b], T0)
        newer = await registry.create([user_a, user_c], T0 + timedelta(hours=1))

        snapshot = await registry.matches_for_user(user_a)
        assert [m.id for m in snapshot.items] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_only_own_matches(self, registry, user_a, user_b, user_c):
        await registry.create([user_a, user_b], T0)
        assert (await registry.matches_for_user(user_c)).items == []

    @pytest.mark.asyncio
    async def test_malformed_match_is_discarded(self, registry, store, user_a, user_b):
        good = await registry.create([user_a, user_b], T0)
        await store.set("matches", "bad", {"participants": [user_a], "matchedAt": "2026-03-01T10:00:00.000000+00:00"})

        snapshot = await registry.matches_for_user(user_a)
        assert [m.id for m in snapshot.items] == [good.id]
        assert [d.doc_id for d in snapshot.discarded] == ["bad"]


class TestMatchFeed:
    """Start, stop, restart."""

    @pytest.mark.asyncio
    async def test_initial_and_updated_delivery(self, registry, user_a, user_b, user_c, wait_until):
        seen = []
        feed = MatchFeed(registry, on_update=lambda snap: seen.append(snap))
        await registry.create([user_a, user_b], T0)

        feed.start_listening(user_a)
        await wait_until(lambda: len(feed.matches) == 1)

        await registry.create([user_a, user_c], T0 + timedelta(minutes=5))
        await wait_until(lambda: len(feed.matches) == 2)

        assert feed.matches[0].participants == [user_a, user_c]
        assert seen[-1].items == feed.matches
        feed.stop_listening()

    @pytest.mark.asyncio
    async def test_restart_replaces_subscription(self, registry, bus, user_a, user_b, wait_until):
        feed = MatchFeed(registry)
        feed.start_listening(user_a)
        await wait_until(lambda: feed.listening)
        first = feed._subscription

        feed.start_listening(user_b)

        assert first.active is False
        assert feed.user_id == user_b
        assert bus.listener_count("matches") == 1
        feed.stop_listening()

    @pytest.mark.asyncio
    async def test_stop_releases_listener(self, registry, bus, user_a):
        feed = MatchFeed(registry)
        feed.start_listening(user_a)
        assert bus.listener_count("matches") == 1

        feed.stop_listening()

        assert feed.listening is False
        assert bus.listener_count("matches") == 0

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, registry):
        MatchFeed(registry).stop_listening()

    @pytest.mark.asyncio
    async def test_handler_error_reported(self, registry, user_a, wait_until):
        errors = []

        def explode(_snapshot):
            raise RuntimeError("render failed")

        feed = MatchFeed(registry, on_update=explode, on_error=errors.append)
        feed.start_listening(user_a)
        await wait_until(lambda: errors)

        assert str(errors[0]) == "render failed"
        assert feed.last_error is errors[0]
        assert feed.listening is False
