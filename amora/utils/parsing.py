"""
Amora — Explicit record parsing.

Documents come back from the store as loosely typed dicts.  Each parse
function returns either ``Ok(entity)`` or ``ParseError(reason)``; callers that
drop a record must go through :func:`partition`, which logs every discard.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, TypeVar, Union

import pydantic
import structlog

from amora.schemas.chat import Message, ThreadSummary
from amora.schemas.match import Match
from amora.schemas.user import AppUser

logger = structlog.get_logger("amora.parsing")

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class ParseError:
    collection: str
    doc_id: str
    reason: str


ParseResult = Union[Ok[T], ParseError]
Parser = Callable[[str, str, dict], ParseResult]


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _parse(model: type[pydantic.BaseModel], collection: str, doc_id: str, payload: Any) -> ParseResult:
    if not isinstance(payload, dict):
        return ParseError(collection, doc_id, f"payload is {type(payload).__name__}, not an object")
    try:
        return Ok(model.model_validate(payload))
    except pydantic.ValidationError as exc:
        return ParseError(collection, doc_id, _describe(exc))


def parse_user(collection: str, doc_id: str, data: dict) -> ParseResult[AppUser]:
    # The uid field is authoritative; the document id is not substituted.
    return _parse(AppUser, collection, doc_id, data)


def parse_match(collection: str, doc_id: str, data: dict) -> ParseResult[Match]:
    return _parse(Match, collection, doc_id, {**data, "id": doc_id} if isinstance(data, dict) else data)


def parse_message(collection: str, doc_id: str, data: dict) -> ParseResult[Message]:
    return _parse(Message, collection, doc_id, {**data, "id": doc_id} if isinstance(data, dict) else data)


def parse_thread_summary(collection: str, doc_id: str, data: dict) -> ParseResult[ThreadSummary]:
    return _parse(ThreadSummary, collection, doc_id, {**data, "id": doc_id} if isinstance(data, dict) else data)


def log_discarded(error: ParseError) -> None:
    logger.warning(
        "record_discarded",
        collection=error.collection,
        doc_id=error.doc_id,
        reason=error.reason,
    )


def partition(results: Iterable[ParseResult[T]]) -> tuple[list[T], list[ParseError]]:
    """Split parse results into entities and logged discards, keeping order."""
    items: list[T] = []
    discarded: list[ParseError] = []
    for result in results:
        if isinstance(result, Ok):
            items.append(result.value)
        else:
            log_discarded(result)
            discarded.append(result)
    return items, discarded
