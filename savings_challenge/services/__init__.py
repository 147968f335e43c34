"""Services package."""

from savings_challenge.services.storage import (
    ConflictError,
    ConnectionError,
    DocumentStore,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    IdCollisionError,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)

__all__ = [
    "ConflictError",
    "ConnectionError",
    "DocumentStore",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "IdCollisionError",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
]
