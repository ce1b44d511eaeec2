"""Shared pytest fixtures for Amora tests."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from amora.config import Settings
from amora.database import create_engine_from_settings, create_session_factory, create_tables
from amora.services.auth_service import AuthProvider
from amora.services.change_bus import LocalChangeBus
from amora.services.chat_service import MessageLog
from amora.services.document_store import DocumentStore
from amora.services.like_ledger import LikeLedger
from amora.services.match_registry import MatchRegistry
from amora.services.user_directory import UserDirectory
from amora.utils.encryption import get_fernet


class FakeClock:
    """Deterministic clock that advances one step on every call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now = self.now + self.step
        return self.now


async def _wait_until(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fernet_key():
    return Fernet.generate_key().decode()


@pytest.fixture
def settings(tmp_path, fernet_key):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'amora.db'}",
        FERNET_KEY=fernet_key,
        REDIS_URL="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine_from_settings(settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def bus():
    return LocalChangeBus()


@pytest.fixture
def store(session_factory, bus):
    return DocumentStore(session_factory, bus)


@pytest.fixture
def directory(store):
    return UserDirectory(store)


@pytest.fixture
def registry(store):
    return MatchRegistry(store)


@pytest.fixture
def ledger(store, registry, clock):
    return LikeLedger(store, registry, clock=clock)


@pytest.fixture
def strict_ledger(store, registry, clock):
    return LikeLedger(store, registry, clock=clock, strict_matching=True)


@pytest.fixture
def message_log(store, clock):
    return MessageLog(store, clock=clock)


@pytest.fixture
def auth_provider(session_factory, fernet_key):
    return AuthProvider(session_factory, get_fernet(fernet_key))


@pytest.fixture
def user_a():
    return "a" + uuid.uuid4().hex


@pytest.fixture
def user_b():
    return "b" + uuid.uuid4().hex


@pytest.fixture
def user_c():
    return "c" + uuid.uuid4().hex
