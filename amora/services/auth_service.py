"""
Amora — Authentication Provider & per-client Auth Session

``AuthProvider`` owns the ``accounts`` table: account creation, password
sign-in, session tokens and sign-out.  Tokens are Fernet-encrypted payloads
``{uid, email, sid}`` checked against ``SESSION_TTL_SECONDS``; signing out
revokes the token's session id for the lifetime of the process.

``AuthSession`` is the client-side view: it tracks the signed-in identity and
notifies its listeners whenever that identity changes (sign-up, sign-in,
token restore, sign-out).
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from typing import Any, Callable, Optional

import structlog
from cryptography.fernet import Fernet
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from amora.errors import AuthenticationError, RemoteOperationError
from amora.models.account import Account
from amora.schemas.auth import Identity, SessionToken
from amora.utils.encryption import decrypt_token, encrypt_token, hash_password, verify_password

logger = structlog.get_logger("amora.auth_service")

IdentityListener = Callable[[Optional[Identity]], Any]


def _normalise_email(email: str) -> str:
    return email.strip().lower()


class AuthProvider:
    """Email/password accounts with Fernet session tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fernet: Fernet,
        ttl_seconds: int = 7 * 24 * 3600,
        password_min_length: int = 6,
    ) -> None:
        self._session_factory = session_factory
        self._fernet = fernet
        self.ttl_seconds = ttl_seconds
        self.password_min_length = password_min_length
        self._revoked: set[str] = set()

    # ── Accounts ──────────────────────────────────────────────────────────

    async def create_account(self, email: str, password: str) -> SessionToken:
        """Register a new account and return a signed-in session token."""
        address = _normalise_email(email)
        log = logger.bind(email=address)

        if "@" not in address or address.startswith("@") or address.endswith("@"):
            raise AuthenticationError("The email address is badly formatted.")
        if len(password) < self.password_min_length:
            raise AuthenticationError(
                f"Password must be at least {self.password_min_length} characters."
            )

        password_hash, salt = await asyncio.to_thread(hash_password, password)
        account = Account(
            id=uuid.uuid4().hex,
            email=address,
            password_hash=password_hash,
            salt=salt,
        )
        try:
            async with self._session_factory() as session:
                session.add(account)
                await session.commit()
        except IntegrityError as exc:
            log.warning("create_account_duplicate_email")
            raise AuthenticationError("The email address is already in use.") from exc
        except SQLAlchemyError as exc:
            log.error("create_account_failed", error=str(exc))
            raise RemoteOperationError("Account creation failed.") from exc

        log.info("account_created", uid=account.id)
        return self.issue_token(Identity(uid=account.id, email=address))

    async def sign_in(self, email: str, password: str) -> SessionToken:
        address = _normalise_email(email)
        log = logger.bind(email=address)

        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Account).where(Account.email == address))
                account = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            log.error("sign_in_lookup_failed", error=str(exc))
            raise RemoteOperationError("Sign-in failed.") from exc

        if account is None:
            log.warning("sign_in_unknown_email")
            raise AuthenticationError("Invalid email or password.")

        ok = await asyncio.to_thread(verify_password, password, account.salt, account.password_hash)
        if not ok:
            log.warning("sign_in_bad_password")
            raise AuthenticationError("Invalid email or password.")

        log.info("signed_in", uid=account.id)
        return self.issue_token(Identity(uid=account.id, email=account.email))

    # ── Tokens ────────────────────────────────────────────────────────────

    def issue_token(self, identity: Identity) -> SessionToken:
        token = encrypt_token(
            self._fernet,
            {"uid": identity.uid, "email": identity.email, "sid": uuid.uuid4().hex},
        )
        return SessionToken(token=token, uid=identity.uid, email=identity.email)

    def verify(self, token: str) -> Identity:
        payload = decrypt_token(self._fernet, token, self.ttl_seconds)
        if payload is None or not {"uid", "email", "sid"} <= payload.keys():
            raise AuthenticationError("Invalid or expired session token.")
        if payload["sid"] in self._revoked:
            raise AuthenticationError("Session has been signed out.")
        return Identity(uid=payload["uid"], email=payload["email"])

    def sign_out(self, token: str) -> None:
        payload = decrypt_token(self._fernet, token, self.ttl_seconds)
        if payload is None or "sid" not in payload:
            raise AuthenticationError("Invalid or expired session token.")
        self._revoked.add(payload["sid"])
        logger.info("signed_out", uid=payload.get("uid"))


class AuthSession:
    """Signed-in state of one client plus identity-change notifications."""

    def __init__(self, provider: AuthProvider) -> None:
        self.provider = provider
        self.identity: Optional[Identity] = None
        self.token: Optional[str] = None
        self._listeners: list[IdentityListener] = []

    @property
    def is_signed_in(self) -> bool:
        return self.identity is not None

    def on_identity_changed(self, listener: IdentityListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def sign_up(self, email: str, password: str) -> SessionToken:
        session_token = await self.provider.create_account(email, password)
        await self._set_identity(Identity(uid=session_token.uid, email=session_token.email), session_token.token)
        return session_token

    async def sign_in(self, email: str, password: str) -> SessionToken:
        session_token = await self.provider.sign_in(email, password)
        await self._set_identity(Identity(uid=session_token.uid, email=session_token.email), session_token.token)
        return session_token

    async def restore(self, token: str) -> Identity:
        """Adopt an existing session token (e.g. a reconnecting client)."""
        identity = self.provider.verify(token)
        await self._set_identity(identity, token)
        return identity

    async def sign_out(self) -> None:
        if self.token is not None:
            self.provider.sign_out(self.token)
        await self._set_identity(None, None)

    async def _set_identity(self, identity: Optional[Identity], token: Optional[str]) -> None:
        self.identity = identity
        self.token = token
        for listener in list(self._listeners):
            result = listener(identity)
            if inspect.isawaitable(result):
                await result
