"""
Amora — Service container & FastAPI dependencies

``Services`` is built once in the application lifespan and stored on
``app.state``; routes reach it through :func:`get_services`.  Nothing here
is a module-level singleton, so every test app gets independent state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from amora.config import Settings
from amora.errors import AuthenticationError
from amora.schemas.auth import Identity
from amora.services.auth_service import AuthProvider, AuthSession
from amora.services.change_bus import LocalChangeBus
from amora.services.chat_service import MessageLog
from amora.services.client_session import ClientSession
from amora.services.document_store import DocumentStore
from amora.services.like_ledger import LikeLedger
from amora.services.match_registry import MatchFeed, MatchRegistry
from amora.services.user_directory import UserDirectory
from amora.utils.encryption import get_fernet
from amora.utils.serialization import utcnow


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    bus: LocalChangeBus
    store: DocumentStore
    directory: UserDirectory
    registry: MatchRegistry
    ledger: LikeLedger
    message_log: MessageLog
    auth_provider: AuthProvider

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        bus: LocalChangeBus,
        clock: Callable[[], datetime] = utcnow,
    ) -> "Services":
        store = DocumentStore(session_factory, bus)
        registry = MatchRegistry(store)
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            bus=bus,
            store=store,
            directory=UserDirectory(store),
            registry=registry,
            ledger=LikeLedger(
                store,
                registry,
                clock=clock,
                strict_matching=settings.STRICT_MATCHING,
            ),
            message_log=MessageLog(
                store,
                clock=clock,
                separator=settings.THREAD_ID_SEPARATOR,
            ),
            auth_provider=AuthProvider(
                session_factory,
                get_fernet(settings.FERNET_KEY),
                ttl_seconds=settings.SESSION_TTL_SECONDS,
                password_min_length=settings.PASSWORD_MIN_LENGTH,
            ),
        )

    def client_session(self, match_feed: Optional[MatchFeed] = None) -> ClientSession:
        return ClientSession(
            AuthSession(self.auth_provider),
            self.directory,
            self.ledger,
            self.message_log,
            match_feed=match_feed,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


_bearer = HTTPBearer(auto_error=False)


def get_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_identity(
    token: str = Depends(get_token),
    services: Services = Depends(get_services),
) -> Identity:
    try:
        return services.auth_provider.verify(token)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
