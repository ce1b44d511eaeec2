"""
Amora — ORM model registry.

Importing every model here ensures that ``Base.metadata.create_all`` (and any
other tool that inspects ``Base.metadata``) discovers all tables automatically.
"""

from amora.models.account import Account
from amora.models.document import Document

__all__ = [
    "Account",
    "Document",
]
