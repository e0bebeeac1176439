"""SQLite-backed document store."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from tasksync.storage.base import DocumentStore, StoreError, apply_update, matches
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)


class SQLiteStore(DocumentStore):
    """Durable store keeping JSON documents in a single SQLite table.

    One connection serves the whole process and every statement runs under
    an asyncio lock, which makes each single-document update atomic with
    respect to other writers in the process.
    """

    def __init__(self, db_path: str = "tasksync.db") -> None:
        """Initialize SQLite store.

        Args:
            db_path: Path to the database file, or ":memory:"
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        if self.db_path != ":memory:":
            path = Path(self.db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        else:
            target = self.db_path

        async with self._lock:
            self._db = await aiosqlite.connect(target)

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")

            # seq preserves insertion order for find()
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    UNIQUE (collection, id)
                )
            """)
            await self._db.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection, seq)
            """)

            await self._db.commit()
            logger.info("sqlite_store_initialized", path=target)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("SQLite store is not initialized")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock for one unit of work and commit it, or roll it back.

        aiosqlite keeps running a statement after the awaiting coroutine is
        cancelled, so a cancelled write must be rolled back before the lock
        is released or the next commit would make it durable.
        """
        async with self._lock:
            db = self._conn()
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        stored = {**document}
        stored.setdefault("version", 1)

        try:
            async with self._transaction() as db:
                await db.execute(
                    "INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)",
                    (collection, stored["id"], json.dumps(stored)),
                )
        except aiosqlite.IntegrityError as e:
            raise StoreError(f"Duplicate id {stored['id']} in {collection}") from e
        return stored

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def find(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT body FROM documents WHERE collection = ? ORDER BY seq",
                (collection,),
            )
            rows = await cursor.fetchall()

        documents = (json.loads(row[0]) for row in rows)
        return [doc for doc in documents if matches(doc, filters or {})]

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any] | None:
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
            row = await cursor.fetchone()
            if not row:
                return None

            updated = apply_update(json.loads(row[0]), fields, expected_version)
            await db.execute(
                "UPDATE documents SET body = ? WHERE collection = ? AND id = ?",
                (json.dumps(updated), collection, doc_id),
            )
        return updated

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
        return cursor.rowcount > 0

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._lock:
                await self._db.execute("SELECT 1")
            return True
        except Exception as e:
            logger.error("sqlite_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("sqlite_store_closed")
