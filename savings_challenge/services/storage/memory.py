"""
In-Memory Document Store

Used for tests and local runs. Behaves like the shared store: full
overwrite on put, no merge, no transactions. Documents are deep-copied
in and out so callers can never mutate stored state by reference.
"""

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any, Optional

from savings_challenge.services.storage.interface import DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store with push subscriptions."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        document = self._collections[collection].get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        self._collections[collection][doc_id] = copy.deepcopy(document)
        snapshot = self._snapshot(collection)
        for queue in self._subscribers[collection]:
            queue.put_nowait(copy.deepcopy(snapshot))

    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        return self._snapshot(collection)

    async def subscribe(self, collection: str) -> AsyncIterator[list[dict[str, Any]]]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[collection].append(queue)
        try:
            yield self._snapshot(collection)
            while True:
                yield await queue.get()
        finally:
            self._subscribers[collection].remove(queue)

    def _snapshot(self, collection: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collections[collection].values()]
