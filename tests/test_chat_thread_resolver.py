"""Unit tests for the chat thread resolver."""
import pytest

from amora.errors import ValidationError
from amora.services.chat_service import messages_collection, thread_id


class TestThreadId:
    """Thread ids are a pure function of the unordered pair."""

    def test_symmetric(self, user_a, user_b):
        assert thread_id(user_a, user_b) == thread_id(user_b, user_a)

    def test_sorted_and_joined(self):
        assert thread_id("zoe", "adam") == "adam_zoe"

    def test_custom_separator(self):
        assert thread_id("u2", "u1", separator="--") == "u1--u2"

    def test_self_chat_rejected(self, user_a):
        with pytest.raises(ValidationError):
            thread_id(user_a, user_a)

    def test_lexicographic_not_numeric(self):
        """'10' sorts before '9' as text."""
        assert thread_id("9", "10") == "10_9"

    def test_messages_collection_nested_under_thread(self):
        assert messages_collection("a_b") == "chats/a_b/messages"
