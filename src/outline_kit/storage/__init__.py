# src/outline_kit/storage/__init__.py

"""Persistence collaborators for documents and outline nodes.

The SQLite and Postgres backends import their drivers lazily through their
own modules; import them directly when needed.
"""

from .base import DocumentRepository, NodeRepository
from .memory import InMemoryDocumentRepository, InMemoryNodeRepository

__all__ = [
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "InMemoryNodeRepository",
    "NodeRepository",
]
