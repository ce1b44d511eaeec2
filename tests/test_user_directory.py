"""Unit tests for UserDirectory."""
import asyncio
import base64

import pytest

from amora.errors import NotFoundError, ValidationError


class TestUpsertIfAbsent:
    """Creation happens once per id."""

    @pytest.mark.asyncio
    async def test_creates_record_with_empty_image_fields(self, directory, store, user_a):
        created = await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        assert created is True

        raw = (await store.get("users", user_a)).data
        assert raw["profileImageURL"] == ""
        assert raw["profileImageData"] == ""

        user = await directory.get(user_a)
        assert user.display_name == "Alice"
        assert user.profile_image_data is None

    @pytest.mark.asyncio
    async def test_second_call_is_a_noop(self, directory, user_a):
        """The first display name survives a later upsert."""
        await directory.upsert_if_absent(user_a, "a@example.com", "First")
        created = await directory.upsert_if_absent(user_a, "a@example.com", "Second")
        assert created is False
        assert (await directory.get(user_a)).display_name == "First"

    @pytest.mark.asyncio
    async def test_does_not_overwrite_edited_profile(self, directory, user_a):
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        await directory.update_display_name(user_a, "Ally")
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        assert (await directory.get(user_a)).display_name == "Ally"

    @pytest.mark.asyncio
    async def test_blank_name_stored_as_unknown(self, directory, user_a):
        assert await directory.upsert_if_absent(user_a, "a@example.com", "   ") is True
        assert (await directory.get(user_a)).display_name == "Unknown"

    @pytest.mark.asyncio
    async def test_concurrent_upserts_create_once(self, directory, user_a):
        results = await asyncio.gather(
            *(directory.upsert_if_absent(user_a, "a@example.com", f"Name {i}") for i in range(4))
        )
        assert sorted(results) == [False, False, False, True]
        assert (await directory.get(user_a)).display_name.startswith("Name ")


class TestGet:
    """Reads return None or raise NotFoundError via require()."""

    @pytest.mark.asyncio
    async def test_get_unknown(self, directory):
        assert await directory.get("ghost") is None

    @pytest.mark.asyncio
    async def test_require_unknown(self, directory):
        with pytest.raises(NotFoundError) as info:
            await directory.require("ghost")
        assert info.value.user_id == "ghost"

    @pytest.mark.asyncio
    async def test_malformed_record_reads_as_absent(self, directory, store):
        await store.set("users", "broken", {"uid": "broken"})
        assert await directory.get("broken") is None


class TestUpdates:
    """Owner-only profile edits."""

    @pytest.mark.asyncio
    async def test_display_name_trimmed(self, directory, user_a):
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        await directory.update_display_name(user_a, "  Ally  ")
        assert (await directory.get(user_a)).display_name == "Ally"

    @pytest.mark.asyncio
    async def test_empty_display_name_rejected(self, directory, user_a):
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        with pytest.raises(ValidationError):
            await directory.update_display_name(user_a, " \n\t ")
        assert (await directory.get(user_a)).display_name == "Alice"

    @pytest.mark.asyncio
    async def test_display_name_unknown_user(self, directory):
        with pytest.raises(NotFoundError):
            await directory.update_display_name("ghost", "Name")

    @pytest.mark.asyncio
    async def test_profile_image_stored_as_base64(self, directory, user_a):
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        payload = b"\x89PNG not really an image"
        encoded = await directory.update_profile_image(user_a, payload)
        assert base64.b64decode(encoded) == payload
        assert (await directory.get(user_a)).profile_image_data == encoded

    @pytest.mark.asyncio
    async def test_profile_image_not_validated(self, directory, user_a):
        """Any bytes, any size, are accepted."""
        await directory.upsert_if_absent(user_a, "a@example.com", "Alice")
        await directory.update_profile_image(user_a, b"\x00" * 200_000)
        assert (await directory.get(user_a)).profile_image_data

    @pytest.mark.asyncio
    async def test_profile_image_unknown_user(self, directory):
        with pytest.raises(NotFoundError):
            await directory.update_profile_image("ghost", b"img")


class TestCandidates:
    """Swipe deck source."""

    @pytest.mark.asyncio
    async def test_excludes_viewer_and_malformed(self, directory, store, user_a, user_b, user_c):
        for uid, name in [(user_a, "A"), (user_b, "B"), (user_c, "C")]:
            await directory.upsert_if_absent(uid, f"{name}@example.com", name)
        await store.set("users", "broken", {"uid": "broken", "email": "x"})

        candidates = await directory.list_candidates(user_a)
        assert [u.id for u in candidates] == [user_b, user_c]
