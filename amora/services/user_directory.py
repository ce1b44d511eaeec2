"""
Amora — User Directory

Maps a user id (the auth provider's subject id) to profile attributes.
Records live in the ``users`` collection keyed by uid and are written only
by their owner.  Profile images are stored as base64 text with no size or
format validation.
"""

from __future__ import annotations

import base64

import structlog

from amora.errors import NotFoundError, ValidationError
from amora.schemas.user import AppUser
from amora.services.document_store import DocumentStore, Query
from amora.utils.parsing import Ok, log_discarded, parse_user, partition

logger = structlog.get_logger("amora.user_directory")

USERS = "users"
UNKNOWN_NAME = "Unknown"


class UserDirectory:
    """Read/write access to user profiles."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def upsert_if_absent(self, user_id: str, email: str, display_name: str) -> bool:
        """Create the user record unless one already exists.

        Returns True when a record was created.  The check and the insert are
        one statement, so concurrent sign-ins for a new user create it once.
        A blank *display_name* is stored as "Unknown".
        """
        name = display_name.strip() or UNKNOWN_NAME
        created = await self.store.create(
            USERS,
            user_id,
            {
                "uid": user_id,
                "email": email,
                "displayName": name,
                "profileImageURL": "",
                "profileImageData": "",
            },
        )
        if created:
            logger.info("user_created", user_id=user_id, email=email)
        else:
            logger.debug("user_upsert_skipped", user_id=user_id)
        return created

    async def get(self, user_id: str) -> AppUser | None:
        snapshot = await self.store.get(USERS, user_id)
        if snapshot is None:
            return None
        result = parse_user(USERS, user_id, snapshot.data)
        if isinstance(result, Ok):
            return result.value
        log_discarded(result)
        return None

    async def require(self, user_id: str) -> AppUser:
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError(user_id)
        return user

    async def update_display_name(self, user_id: str, name: str) -> None:
        trimmed = name.strip()
        if not trimmed:
            raise ValidationError("Display name cannot be empty.")
        if not await self.store.update(USERS, user_id, {"displayName": trimmed}):
            raise NotFoundError(user_id)
        logger.info("display_name_updated", user_id=user_id)

    async def update_profile_image(self, user_id: str, image_bytes: bytes) -> str:
        """Store *image_bytes* as base64 text and return the encoded value."""
        encoded = base64.b64encode(image_bytes).decode("ascii")
        if not await self.store.update(USERS, user_id, {"profileImageData": encoded}):
            raise NotFoundError(user_id)
        logger.info("profile_image_updated", user_id=user_id, size=len(image_bytes))
        return encoded

    async def list_candidates(self, viewer_id: str) -> list[AppUser]:
        """Every parseable user except *viewer_id*, in creation order."""
        documents = await self.store.query(Query(USERS).where_not_equals("uid", viewer_id))
        users, _ = partition(parse_user(doc.collection, doc.id, doc.data) for doc in documents)
        return users
