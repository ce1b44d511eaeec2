"""
Amora — Chat Thread Resolver & Message Log

A thread is addressed by its two participants' ids, sorted and joined with a
separator, so both sides derive the same id without a lookup.  Messages are
appended under ``chats/{thread_id}/messages``; the thread summary document
``chats/{thread_id}`` is merged after every send for the chat list.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

import structlog

from amora.errors import ValidationError
from amora.schemas.chat import Message, ThreadSummary
from amora.services.document_store import DocumentStore, Query
from amora.services.live_feed import LiveQuery, Snapshot, fetch_snapshot
from amora.utils.parsing import parse_message, parse_thread_summary
from amora.utils.serialization import utcnow

logger = structlog.get_logger("amora.chat_service")

CHATS = "chats"
DEFAULT_SEPARATOR = "_"


def thread_id(user_a: str, user_b: str, separator: str = DEFAULT_SEPARATOR) -> str:
    """Canonical id of the thread between two distinct users."""
    if user_a == user_b:
        raise ValidationError("A chat thread needs two different users.")
    return separator.join(sorted([user_a, user_b]))


def messages_collection(thread: str) -> str:
    return f"{CHATS}/{thread}/messages"


def _thread_messages_query(thread: str) -> Query:
    return Query(messages_collection(thread)).order("timestamp")


def _summaries_query(user_id: str) -> Query:
    return (
        Query(CHATS)
        .where_array_contains("participants", user_id)
        .order("lastMessageTimestamp", descending=True)
    )


class MessageLog:
    """Append-only per-thread message log plus thread summaries."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = utcnow,
        separator: str = DEFAULT_SEPARATOR,
    ) -> None:
        self.store = store
        self.clock = clock
        self.separator = separator

    def resolve_thread(self, user_a: str, user_b: str) -> str:
        return thread_id(user_a, user_b, self.separator)

    async def append(self, thread: str, sender_id: str, receiver_id: str, text: str) -> Message:
        """Append a message and merge the thread summary.

        The message and the summary are two independent writes; a failure of
        the second leaves the first in place.
        """
        trimmed = text.strip()
        if not trimmed:
            raise ValidationError("Message text cannot be empty.")

        log = logger.bind(thread_id=thread, sender_id=sender_id)
        now = self.clock()

        message_id = await self.store.add(
            messages_collection(thread),
            {
                "senderId": sender_id,
                "receiverId": receiver_id,
                "text": trimmed,
                "timestamp": now,
            },
        )
        await self.store.set(
            CHATS,
            thread,
            {
                "participants": [sender_id, receiver_id],
                "lastMessage": trimmed,
                "lastMessageTimestamp": now,
            },
            merge=True,
        )
        log.info("message_appended", message_id=message_id, length=len(trimmed))
        return Message(
            id=message_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            text=trimmed,
            timestamp=now,
        )

    async def messages(self, thread: str) -> Snapshot[Message]:
        return await fetch_snapshot(self.store, _thread_messages_query(thread), parse_message)

    def live_feed_for_thread(
        self,
        thread: str,
        handler: Callable[[Snapshot], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> LiveQuery:
        """Messages of *thread*, oldest first, re-delivered on every change."""
        return self.store.watch(_thread_messages_query(thread), parse_message, handler, on_error)

    async def thread_summaries(self, user_id: str) -> Snapshot[ThreadSummary]:
        return await fetch_snapshot(self.store, _summaries_query(user_id), parse_thread_summary)

    def live_thread_summaries(
        self,
        user_id: str,
        handler: Callable[[Snapshot], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> LiveQuery:
        """Summaries of every thread *user_id* is in, most recent first."""
        return self.store.watch(_summaries_query(user_id), parse_thread_summary, handler, on_error)
