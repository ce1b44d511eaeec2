"""
Amora — Live feed WebSockets

Each socket authenticates with ``?token=`` and then receives the full
current result set as JSON every time it changes:

  /ws/matches              {"items": [Match, ...], "discarded": n}
  /ws/chats                {"items": [ThreadSummary, ...], "discarded": n}
  /ws/chats/{thread_id}    {"items": [Message, ...], "discarded": n}

A feed error is sent once as ``{"error": ...}`` and the socket is closed.
Closing the socket cancels the underlying subscription.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from amora.api.deps import Services
from amora.errors import AuthenticationError
from amora.schemas.auth import Identity
from amora.services.live_feed import Snapshot
from amora.services.match_registry import MatchFeed

logger = structlog.get_logger("amora.api.feeds")

router = APIRouter()

_AUTH_FAILED = 4401
_FORBIDDEN = 4403


def _payload(snapshot: Snapshot) -> dict:
    return {
        "items": [item.model_dump(mode="json", by_alias=True) for item in snapshot.items],
        "discarded": len(snapshot.discarded),
    }


async def _authenticate(websocket: WebSocket, token: str) -> Identity | None:
    services: Services = websocket.app.state.services
    try:
        return services.auth_provider.verify(token)
    except AuthenticationError:
        await websocket.close(code=_AUTH_FAILED)
        return None


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _pump(websocket: WebSocket, queue: asyncio.Queue, cleanup: Callable[[], None]) -> None:
    """Forward snapshots from *queue* until the client leaves or the feed fails."""
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {getter, disconnect}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnect in done:
                getter.cancel()
                return
            item = getter.result()
            if isinstance(item, Exception):
                await websocket.send_json({"error": str(item)})
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
                return
            await websocket.send_json(_payload(item))
    finally:
        cleanup()
        disconnect.cancel()


# ──────────────────────────────────────────────────────────────────────────────
# /matches — session-owned match feed
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/matches")
async def match_feed_socket(websocket: WebSocket, token: str = Query(...)) -> None:
    services: Services = websocket.app.state.services
    queue: asyncio.Queue = asyncio.Queue()
    feed = MatchFeed(services.registry, on_update=queue.put_nowait, on_error=queue.put_nowait)
    session = services.client_session(match_feed=feed)

    try:
        await session.restore(token)
    except AuthenticationError:
        session.close()
        await websocket.close(code=_AUTH_FAILED)
        return

    await websocket.accept()
    logger.info("match_socket_open", user_id=session.auth.identity.uid)
    await _pump(websocket, queue, session.close)


# ──────────────────────────────────────────────────────────────────────────────
# /chats — thread summaries
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/chats")
async def thread_summaries_socket(websocket: WebSocket, token: str = Query(...)) -> None:
    identity = await _authenticate(websocket, token)
    if identity is None:
        return
    services: Services = websocket.app.state.services

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    subscription = services.message_log.live_thread_summaries(
        identity.uid, queue.put_nowait, on_error=queue.put_nowait
    )
    await _pump(websocket, queue, subscription.cancel)


# ──────────────────────────────────────────────────────────────────────────────
# /chats/{thread_id} — messages of one thread
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/chats/{thread_id}")
async def thread_messages_socket(
    websocket: WebSocket,
    thread_id: str,
    token: str = Query(...),
) -> None:
    identity = await _authenticate(websocket, token)
    if identity is None:
        return
    services: Services = websocket.app.state.services

    parts = thread_id.split(services.message_log.separator)
    if len(parts) != 2 or identity.uid not in parts:
        await websocket.close(code=_FORBIDDEN)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    subscription = services.message_log.live_feed_for_thread(
        thread_id, queue.put_nowait, on_error=queue.put_nowait
    )
    await _pump(websocket, queue, subscription.cancel)
