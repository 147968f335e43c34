"""
Abstract Document Store Interface

DESIGN DECISION: Challenges and users live in a shared realtime document
store that every client reads and writes. We define an abstract interface
for it. This allows us to:
1. Swap backends (Google Sheets, a realtime database) without touching logic
2. Use in-memory storage for testing
3. Inject the store explicitly instead of reaching for a global

The store is deliberately dumb: full-document overwrite, last writer wins,
no transactions, no server-side merge. Stale writes are detected by the
caller through the document's revision, not by the store.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Optional


class DocumentStore(ABC):
    """
    Abstract interface for the shared document store.

    Any store implementation must implement these methods.
    Documents are JSON-safe dicts.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """
        Retrieve a document by ID.

        Args:
            collection: Collection name (e.g. 'challenges')
            doc_id: Document ID

        Returns:
            The document if found, None otherwise

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """
        Write a document, replacing any previous version entirely.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        """
        Return every document in a collection.

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    def subscribe(self, collection: str) -> AsyncIterator[list[dict[str, Any]]]:
        """
        Stream snapshots of a collection.

        Yields the full collection once on subscription and again after
        every change. Used by UI layers; the core never subscribes.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """The document changed between our read and our write."""

    def __init__(self, collection: str, doc_id: str, expected_revision: int, found_revision: int):
        self.collection = collection
        self.doc_id = doc_id
        self.expected_revision = expected_revision
        self.found_revision = found_revision
        super().__init__(
            f"Stale write to {collection}/{doc_id}: read revision "
            f"{expected_revision}, store has {found_revision}"
        )


class IdCollisionError(StorageError):
    """A new document ID is already taken."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} already exists")


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
