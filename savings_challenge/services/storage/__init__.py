"""
Storage Services Package

Provides the abstract document store and its implementations.
The in-memory store backs tests and local runs; Google Sheets backs
shared deployments. Both are swappable behind DocumentStore.
"""

from savings_challenge.services.storage.interface import (
    ConflictError,
    ConnectionError,
    DocumentStore,
    IdCollisionError,
    NotFoundError,
    StorageError,
)
from savings_challenge.services.storage.memory import InMemoryDocumentStore
from savings_challenge.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interface
    "DocumentStore",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "IdCollisionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
