"""In-process document store."""

import asyncio
import copy
from typing import Any

from tasksync.storage.base import DocumentStore, StoreError, apply_update, matches
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)


class MemoryStore(DocumentStore):
    """Dictionary-backed store for development and tests.

    Documents are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def initialize(self) -> None:
        logger.info("memory_store_initialized")

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        if self._closed:
            raise StoreError("store is closed")
        return self._collections.setdefault(name, {})

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            docs = self._collection(collection)
            if document["id"] in docs:
                raise StoreError(f"Duplicate id {document['id']} in {collection}")
            stored = copy.deepcopy(document)
            stored.setdefault("version", 1)
            docs[stored["id"]] = stored
            return copy.deepcopy(stored)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def find(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collection(collection).values()
                if matches(doc, filters or {})
            ]

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        async with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                return None
            docs[doc_id] = apply_update(docs[doc_id], copy.deepcopy(fields), expected_version)
            return copy.deepcopy(docs[doc_id])

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None

    async def health_check(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True
