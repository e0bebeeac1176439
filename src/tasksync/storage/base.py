"""Document store interface."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


class StoreError(Exception):
    """Raised when the underlying store fails."""


class VersionConflictError(StoreError):
    """Raised when a versioned update finds a different stored version."""

    def __init__(self, doc_id: str, expected: int, actual: int) -> None:
        super().__init__(f"Document {doc_id} is at version {actual}, expected {expected}")
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


def matches(document: dict[str, Any], filters: dict[str, Any]) -> bool:
    """Equality filter with array containment.

    A filter value matches a list field when the list contains it, so
    ``{"members": user_id}`` finds projects the user belongs to.
    """
    for key, expected in filters.items():
        actual = document.get(key)
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def apply_update(
    document: dict[str, Any],
    fields: dict[str, Any],
    expected_version: int | None,
) -> dict[str, Any]:
    """Apply a field-level update to a stored document.

    Only the given keys change; ``version`` is bumped and ``updated_at``
    refreshed on every write.

    Raises:
        VersionConflictError: If expected_version is given and stale
    """
    current = document.get("version", 1)
    if expected_version is not None and expected_version != current:
        raise VersionConflictError(document["id"], expected_version, current)

    updated = {**document, **fields}
    updated["id"] = document["id"]
    updated["version"] = current + 1
    updated["updated_at"] = datetime.now(timezone.utc).isoformat()
    return updated


class DocumentStore(ABC):
    """Durable document store with per-document atomic writes.

    Documents are JSON-compatible dicts keyed by their ``id`` field. No
    operation spans more than one document, so multi-document consistency
    is best-effort.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the store for use."""

    @abstractmethod
    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document and return it as stored (version 1)."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch one document by id."""

    @abstractmethod
    async def find(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return matching documents in insertion order."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        """Atomically set fields on one document.

        Returns:
            The updated document, or None if it does not exist

        Raises:
            VersionConflictError: If expected_version no longer matches
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete one document. Returns False if it did not exist."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the store can serve requests."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
