"""
Amora — Error taxonomy.

Every failure a caller can observe is one of these.  Remote failures are
surfaced to the immediate caller and never retried.
"""

from __future__ import annotations


class AmoraError(Exception):
    """Base class for all Amora errors."""


class ValidationError(AmoraError):
    """Input rejected before any write (empty text, empty name, self-chat)."""


class NotFoundError(AmoraError):
    """A referenced user id is absent from the directory."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found.")
        self.user_id = user_id


class RemoteOperationError(AmoraError):
    """The document store or the auth provider reported a failure."""


class AuthenticationError(RemoteOperationError):
    """Bad credentials, duplicate account, or an invalid session token."""
