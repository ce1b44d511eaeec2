"""
Amora — Chats API

Thread resolution, thread summaries, message history and message sending.
Only participants of a thread may read or write it.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from amora.api.deps import Services, get_current_identity, get_services
from amora.errors import ValidationError
from amora.schemas.auth import Identity
from amora.schemas.chat import Message, MessageCreate, ThreadRef, ThreadSummary

logger = structlog.get_logger("amora.api.chats")

router = APIRouter()


def _participants(services: Services, thread_id: str, uid: str) -> list[str]:
    """Split a thread id into its two participants, requiring *uid* among them."""
    parts = thread_id.split(services.message_log.separator)
    if len(parts) != 2 or uid not in parts:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a participant of this thread.",
        )
    return parts


# ──────────────────────────────────────────────────────────────────────────────
# GET / — Thread summaries, most recent first
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/", response_model=list[ThreadSummary], summary="List chat threads")
async def list_threads(
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> list[ThreadSummary]:
    snapshot = await services.message_log.thread_summaries(identity.uid)
    return snapshot.items


# ──────────────────────────────────────────────────────────────────────────────
# GET /with/{other_id} — Resolve the thread id for a pair
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/with/{other_id}", response_model=ThreadRef, summary="Resolve a thread id")
async def resolve_thread(
    other_id: str,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> ThreadRef:
    thread = services.message_log.resolve_thread(identity.uid, other_id)
    return ThreadRef(thread_id=thread, participants=sorted([identity.uid, other_id]))


# ──────────────────────────────────────────────────────────────────────────────
# GET /{thread_id}/messages — History, oldest first
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{thread_id}/messages",
    response_model=list[Message],
    summary="List messages of a thread",
)
async def list_messages(
    thread_id: str,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> list[Message]:
    _participants(services, thread_id, identity.uid)
    snapshot = await services.message_log.messages(thread_id)
    return snapshot.items


# ──────────────────────────────────────────────────────────────────────────────
# POST /{thread_id}/messages — Send
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{thread_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    thread_id: str,
    payload: MessageCreate,
    identity: Identity = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> Message:
    log = logger.bind(thread_id=thread_id, sender_id=identity.uid)

    _participants(services, thread_id, identity.uid)
    expected = services.message_log.resolve_thread(identity.uid, payload.receiver_id)
    if expected != thread_id:
        log.warning("send_message_thread_mismatch", receiver_id=payload.receiver_id)
        raise ValidationError("Receiver does not belong to this thread.")

    return await services.message_log.append(
        thread_id, identity.uid, payload.receiver_id, payload.text
    )
