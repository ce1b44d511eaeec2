"""
Amora — Document Store

A small document-database contract over the ``documents`` table:

  get(collection, id)                    -> DocumentSnapshot | None
  set(collection, id, data, merge=False) -> None
  create(collection, id, data)           -> bool   (False if it already exists)
  update(collection, id, data)           -> bool   (False if missing)
  add(collection, data)                  -> generated id
  query(Query)                           -> list[DocumentSnapshot]
  watch(Query, parser, handler)          -> LiveQuery

Each operation is its own unit of work: it opens a session, commits, and
publishes the collection on the change bus.  No operation spans more than
one document, so callers never get multi-document atomicity.

Writes are single statements (``INSERT ... ON CONFLICT`` / ``UPDATE``) so
that concurrent writers to one document never lose each other's keys.  A
merge replaces top-level keys only; nested objects and ``None`` values are
not supported in merge payloads because SQLite's ``json_patch`` treats them
differently from PostgreSQL's ``||``.

On PostgreSQL, equality and array-contains filters are pushed into SQL as
JSONB containment.  The same filters, plus ordering, are then applied in
Python so results are identical on SQLite.  Documents missing the
``order_by`` field are excluded from ordered results.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import bindparam, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from amora.errors import RemoteOperationError
from amora.models.document import Document
from amora.services.change_bus import LocalChangeBus
from amora.utils.serialization import encode_document, utcnow

logger = structlog.get_logger("amora.document_store")

_MISSING = object()

_documents = Document.__table__
_DIALECT_INSERT = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


# ──────────────────────────────────────────────────────────────────────────────
# Value types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DocumentSnapshot:
    collection: str
    id: str
    data: dict
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Query:
    """Equality / contains filter on one collection, ordered by one field."""

    collection: str
    equals: Optional[tuple[str, Any]] = None
    not_equals: Optional[tuple[str, Any]] = None
    array_contains: Optional[tuple[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False

    def where_equals(self, field: str, value: Any) -> "Query":
        return replace(self, equals=(field, value))

    def where_not_equals(self, field: str, value: Any) -> "Query":
        return replace(self, not_equals=(field, value))

    def where_array_contains(self, field: str, value: Any) -> "Query":
        return replace(self, array_contains=(field, value))

    def order(self, field: str, descending: bool = False) -> "Query":
        return replace(self, order_by=field, descending=descending)

    def matches(self, data: dict) -> bool:
        if self.equals is not None:
            field, value = self.equals
            if data.get(field, _MISSING) != value:
                return False
        if self.not_equals is not None:
            field, value = self.not_equals
            current = data.get(field, _MISSING)
            if current is _MISSING or current == value:
                return False
        if self.array_contains is not None:
            field, value = self.array_contains
            current = data.get(field)
            if not isinstance(current, list) or value not in current:
                return False
        if self.order_by is not None and self.order_by not in data:
            return False
        return True


def _sort_key(value: Any) -> tuple[str, Any]:
    # Mixed types never compare directly; group by type name first.
    if isinstance(value, (str, int, float, bool)):
        return (type(value).__name__, value)
    return (type(value).__name__, json.dumps(value, sort_keys=True, default=str))


def _json_param(value: Any):
    return bindparam(None, value, type_=_documents.c.data.type)


def _merged(dialect: str, current, patch):
    """SQL expression for ``current`` with the top-level keys of ``patch`` replaced."""
    if dialect == "postgresql":
        return current.op("||", return_type=JSONB)(patch)
    return func.json_patch(current, patch)


def _containment_filters(query: Query) -> list:
    """JSONB ``@>`` clauses for the filters PostgreSQL can answer from the payload."""
    clauses = []
    if query.equals is not None:
        field, value = query.equals
        clauses.append({field: value})
    if query.array_contains is not None:
        field, value = query.array_contains
        clauses.append({field: [value]})
    return [
        _documents.c.data.op("@>", is_comparison=True)(bindparam(None, encode_document(c), type_=JSONB))
        for c in clauses
    ]


async def _dialect_name(session: AsyncSession) -> str:
    connection = await session.connection()
    return connection.dialect.name


# ──────────────────────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────────────────────

class DocumentStore:
    """Async document operations over SQLAlchemy with change notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: LocalChangeBus,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.bus = bus
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(Document, (collection, doc_id))
                if row is None:
                    return None
                return DocumentSnapshot(collection, row.id, dict(row.data), row.created_at)
        except SQLAlchemyError as exc:
            logger.error("document_get_failed", collection=collection, doc_id=doc_id, error=str(exc))
            raise RemoteOperationError(f"Failed to read {collection}/{doc_id}") from exc

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        stmt = (
            select(Document)
            .where(Document.collection == query.collection)
            .order_by(Document.created_at, Document.id)
        )
        try:
            async with self._session_factory() as session:
                if await _dialect_name(session) == "postgresql":
                    stmt = stmt.where(*_containment_filters(query))
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            logger.error("document_query_failed", collection=query.collection, error=str(exc))
            raise RemoteOperationError(f"Failed to query {query.collection}") from exc

        snapshots = [
            DocumentSnapshot(row.collection, row.id, row.data, row.created_at)
            for row in rows
            if isinstance(row.data, dict) and query.matches(row.data)
        ]
        if query.order_by is not None:
            field = query.order_by
            snapshots.sort(key=lambda s: _sort_key(s.data[field]), reverse=query.descending)
        return snapshots

    # ── Writes ────────────────────────────────────────────────────────────

    async def _upsert(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        on_conflict: str,
    ) -> int:
        """Run one ``INSERT ... ON CONFLICT`` and return the affected row count.

        *on_conflict* is ``"replace"``, ``"merge"`` or ``"ignore"``.
        """
        payload = encode_document(data)
        async with self._session_factory() as session:
            dialect = await _dialect_name(session)
            insert = _DIALECT_INSERT.get(dialect)
            if insert is None:
                raise RemoteOperationError(f"Unsupported database dialect: {dialect}")

            stmt = insert(_documents).values(collection=collection, id=doc_id, data=payload)
            keys = [_documents.c.collection, _documents.c.id]
            if on_conflict == "ignore":
                stmt = stmt.on_conflict_do_nothing(index_elements=keys)
            else:
                new_data = stmt.excluded.data
                if on_conflict == "merge":
                    new_data = _merged(dialect, _documents.c.data, stmt.excluded.data)
                stmt = stmt.on_conflict_do_update(
                    index_elements=keys,
                    set_={"data": new_data, "updated_at": utcnow()},
                )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document; with ``merge`` only the given keys change."""
        try:
            await self._upsert(collection, doc_id, data, "merge" if merge else "replace")
        except SQLAlchemyError as exc:
            logger.error("document_set_failed", collection=collection, doc_id=doc_id, error=str(exc))
            raise RemoteOperationError(f"Failed to write {collection}/{doc_id}") from exc

        await self.bus.publish(collection)

    async def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> bool:
        """Insert the document unless it exists; returns True when it was created."""
        try:
            created = await self._upsert(collection, doc_id, data, "ignore") > 0
        except SQLAlchemyError as exc:
            logger.error("document_create_failed", collection=collection, doc_id=doc_id, error=str(exc))
            raise RemoteOperationError(f"Failed to create {collection}/{doc_id}") from exc

        if created:
            await self.bus.publish(collection)
        return created

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> bool:
        """Merge *data* into an existing document; returns False if it is missing."""
        try:
            async with self._session_factory() as session:
                dialect = await _dialect_name(session)
                stmt = (
                    _documents.update()
                    .where(_documents.c.collection == collection, _documents.c.id == doc_id)
                    .values(
                        data=_merged(dialect, _documents.c.data, _json_param(encode_document(data))),
                        updated_at=utcnow(),
                    )
                )
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("document_update_failed", collection=collection, doc_id=doc_id, error=str(exc))
            raise RemoteOperationError(f"Failed to update {collection}/{doc_id}") from exc

        if result.rowcount == 0:
            return False
        await self.bus.publish(collection)
        return True

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Append a document under a generated id and return the id."""
        doc_id = self._id_factory()
        try:
            async with self._session_factory() as session:
                session.add(Document(collection=collection, id=doc_id, data=encode_document(data)))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("document_add_failed", collection=collection, error=str(exc))
            raise RemoteOperationError(f"Failed to append to {collection}") from exc

        await self.bus.publish(collection)
        return doc_id

    # ── Live queries ──────────────────────────────────────────────────────

    def watch(self, query: Query, parser, handler, on_error=None):
        """Start a live query; see :class:`amora.services.live_feed.LiveQuery`."""
        from amora.services.live_feed import LiveQuery

        live = LiveQuery(self, query, parser, handler, on_error=on_error)
        live.start()
        return live
