"""
Amora — Client Session

Per-client orchestration that the UI layer calls into.  When the auth
identity changes to a user, the directory record is created if absent, the
profile is loaded and (when the session owns a ``MatchFeed``) the match feed
starts; on sign-out the profile is cleared and the feed stops.

Remote failures propagate to the caller unchanged.  ``save_profile`` writes
the display name and then the image as two independent updates; if the
image update fails the new name stays.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from amora.errors import AuthenticationError
from amora.schemas.auth import Identity, SessionToken
from amora.schemas.chat import Message
from amora.schemas.match import VerdictResult
from amora.schemas.user import AppUser
from amora.services.auth_service import AuthSession
from amora.services.chat_service import MessageLog
from amora.services.like_ledger import LikeLedger
from amora.services.live_feed import LiveQuery, Snapshot
from amora.services.match_registry import MatchFeed
from amora.services.user_directory import UserDirectory

logger = structlog.get_logger("amora.client_session")


class ClientSession:
    def __init__(
        self,
        auth: AuthSession,
        directory: UserDirectory,
        ledger: LikeLedger,
        message_log: MessageLog,
        match_feed: Optional[MatchFeed] = None,
    ) -> None:
        self.auth = auth
        self.directory = directory
        self.ledger = ledger
        self.message_log = message_log
        self.match_feed = match_feed
        self.user: Optional[AppUser] = None
        self._remove_listener = auth.on_identity_changed(self._handle_identity)

    # ── Identity ──────────────────────────────────────────────────────────

    async def _handle_identity(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self.user = None
            if self.match_feed is not None:
                self.match_feed.stop_listening()
            return

        await self.directory.upsert_if_absent(
            identity.uid, identity.email, identity.email or "Unknown"
        )
        self.user = await self.directory.get(identity.uid)
        if self.user is None:
            logger.warning("session_user_unavailable", uid=identity.uid)
        if self.match_feed is not None:
            self.match_feed.start_listening(identity.uid)

    def _require_uid(self) -> str:
        if self.auth.identity is None:
            raise AuthenticationError("Not signed in.")
        return self.auth.identity.uid

    async def sign_up(self, email: str, password: str) -> SessionToken:
        return await self.auth.sign_up(email, password)

    async def sign_in(self, email: str, password: str) -> SessionToken:
        return await self.auth.sign_in(email, password)

    async def restore(self, token: str) -> Identity:
        return await self.auth.restore(token)

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    # ── Profile ───────────────────────────────────────────────────────────

    async def save_profile(self, display_name: str, image_bytes: Optional[bytes] = None) -> AppUser:
        uid = self._require_uid()
        await self.directory.update_display_name(uid, display_name)
        if image_bytes is not None:
            await self.directory.update_profile_image(uid, image_bytes)
        self.user = await self.directory.require(uid)
        return self.user

    # ── Swiping ───────────────────────────────────────────────────────────

    async def candidates(self) -> list[AppUser]:
        return await self.directory.list_candidates(self._require_uid())

    async def like(self, target_id: str) -> VerdictResult:
        return await self.ledger.record_verdict(self._require_uid(), target_id, True)

    async def pass_user(self, target_id: str) -> VerdictResult:
        return await self.ledger.record_verdict(self._require_uid(), target_id, False)

    # ── Chat ──────────────────────────────────────────────────────────────

    async def send_message(self, other_id: str, text: str) -> Message:
        uid = self._require_uid()
        thread = self.message_log.resolve_thread(uid, other_id)
        return await self.message_log.append(thread, uid, other_id, text)

    def open_thread(
        self,
        other_id: str,
        handler: Callable[[Snapshot], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> LiveQuery:
        thread = self.message_log.resolve_thread(self._require_uid(), other_id)
        return self.message_log.live_feed_for_thread(thread, handler, on_error)

    def close(self) -> None:
        if self.match_feed is not None:
            self.match_feed.stop_listening()
        self._remove_listener()
