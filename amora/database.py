"""
Amora — async SQLAlchemy engine and sessions.

Two ways to reach the database:

* ``DATABASE_URL`` — any async URL; ``asyncpg`` for PostgreSQL, ``aiosqlite``
  for SQLite files (and ``:memory:`` for throwaway runs).
* Cloud SQL — when ``CLOUD_SQL_USE_UNIX_SOCKET`` and
  ``CLOUD_SQL_INSTANCE_CONNECTION`` are both set, connections are opened by
  ``cloud-sql-python-connector`` with IAM auth (install the ``cloudsql`` extra).

Nothing is created at import time; the application lifespan (or a test
fixture) calls :func:`create_engine_from_settings`.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from amora.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the ``accounts`` and ``documents`` tables."""


# Server databases only; SQLite uses SQLAlchemy's defaults
_SERVER_POOL = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def _echo(settings: Settings) -> bool:
    return settings.LOG_LEVEL.upper() == "DEBUG"


def _build_cloud_sql_engine(settings: Settings) -> AsyncEngine:
    from google.cloud.sql.connector import Connector

    connector = Connector()

    async def _connect():
        return await connector.connect_async(
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
            "asyncpg",
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            db=settings.DB_NAME,
            enable_iam_auth=True,
        )

    logger.info("Using Cloud SQL connector for %s", settings.CLOUD_SQL_INSTANCE_CONNECTION)
    return create_async_engine(
        "postgresql+asyncpg://",
        async_creator=_connect,
        echo=_echo(settings),
        **_SERVER_POOL,
    )


def _build_url_engine(settings: Settings) -> AsyncEngine:
    url = settings.DATABASE_URL
    # Accept plain postgres URLs as handed out by most hosting providers
    for plain in ("postgresql://", "postgres://"):
        if url.startswith(plain):
            url = "postgresql+asyncpg://" + url[len(plain):]
            break

    dialect = url.split("://", 1)[0]
    logger.info("Using DATABASE_URL (%s)", dialect)

    if not dialect.startswith("sqlite"):
        return create_async_engine(url, echo=_echo(settings), **_SERVER_POOL)

    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # every pooled connection would otherwise open its own empty database
        kwargs["poolclass"] = StaticPool
    return create_async_engine(url, echo=_echo(settings), **kwargs)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    if settings.CLOUD_SQL_USE_UNIX_SOCKET and settings.CLOUD_SQL_INSTANCE_CONNECTION:
        return _build_cloud_sql_engine(settings)
    return _build_url_engine(settings)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables for every model in :mod:`amora.models`."""
    import amora.models  # noqa: F401  (populates Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ensured")
