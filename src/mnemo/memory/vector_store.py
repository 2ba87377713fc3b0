"""
SQLite-backed vector store for embedding records.

Stores one row per embedded log line. Vectors are packed as little-endian
float32 blobs. Similarity search is a linear cosine scan, which is fine for
a single user's conversation history.

Usage:
    async with SQLiteVectorStore("data/memory/embeddings.sqlite3") as store:
        await store.insert(record)
        matches = await store.search_similar(query_vector, limit=10)
"""

from __future__ import annotations

import asyncio
import logging
import math
import struct
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Sequence, Union

import aiosqlite

from ..domain.entities import EmbeddingRecord, Role, SimilarityMatch, format_timestamp
from ..domain.ports import IVectorStore
from ..exceptions import (
    DimensionMismatchError,
    DuplicateKeyError,
    StorageError,
    StoreNotOpenError,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Ordered (version, script) pairs. Append new versions; never edit old ones.
MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS embeddings (
            id TEXT PRIMARY KEY,
            embedding BLOB NOT NULL,
            path TEXT NOT NULL,
            line INTEGER NOT NULL,
            timestamp TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('user', 'agent')),
            context_id TEXT NOT NULL,
            pinned INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            UNIQUE (path, line)
        );
        CREATE INDEX IF NOT EXISTS idx_embeddings_context_id ON embeddings(context_id);
        CREATE INDEX IF NOT EXISTS idx_embeddings_timestamp ON embeddings(timestamp);
        CREATE INDEX IF NOT EXISTS idx_embeddings_pinned ON embeddings(pinned);
        """,
    ),
]

_SELECT_COLUMNS = "id, embedding, path, line, timestamp, role, context_id, pinned, created_at"


# ============================================
# Vector Helpers
# ============================================


def serialize_embedding(embedding: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32 (4 bytes per component)."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def deserialize_embedding(blob: bytes) -> list[float]:
    """Unpack a float32 blob. Precision is single, not the original double."""
    if len(blob) % 4:
        raise StorageError(
            "Corrupt embedding blob",
            details={"byte_length": len(blob)},
            recoverable=False,
        )
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), or 0.0 when either norm is zero.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(expected=len(a), actual=len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


# ============================================
# Store
# ============================================


class SQLiteVectorStore(IVectorStore):
    """Embedding records in a single SQLite file.

    One aiosqlite connection per store handle. Writes are serialized through
    an asyncio.Lock; reads are not locked. The database runs in WAL mode so
    readers never wait on the writer.

    Every record in a store has the same dimensionality. The first insert
    (or the first stored row found on open) fixes it.
    """

    def __init__(self, db_path: Union[str, Path]):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite file, or ":memory:"
        """
        self.db_path = str(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._dimension: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def dimension(self) -> Optional[int]:
        """The established vector length, or None for an empty store."""
        return self._dimension

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreNotOpenError(details={"db_path": self.db_path})
        return self._db

    @asynccontextmanager
    async def _storage_errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except aiosqlite.Error as e:
            logger.error(f"Vector store {operation} failed: {e}")
            raise StorageError(
                f"Vector store {operation} failed: {e}",
                details={"operation": operation, "db_path": self.db_path},
                cause=e,
            ) from e

    # ----------------------------------------
    # Lifecycle
    # ----------------------------------------

    async def open(self) -> None:
        if self._db is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._storage_errors("open"):
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")

        logger.info(f"Opened vector store at {self.db_path}")

    async def close(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        self._dimension = None
        async with self._storage_errors("close"):
            await db.close()
        logger.info(f"Closed vector store at {self.db_path}")

    async def __aenter__(self) -> "SQLiteVectorStore":
        await self.open()
        await self.migrate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def migrate(self) -> int:
        """Apply pending migrations and return the schema version.

        Calling this on an up-to-date database changes nothing.
        """
        conn = self._conn
        async with self._write_lock, self._storage_errors("migrate"):
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            async with conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
                row = await cursor.fetchone()
            current = row[0] or 0

            for version, script in MIGRATIONS:
                if version <= current:
                    continue
                logger.info(f"Applying vector store migration {version}")
                await conn.executescript(script)
                await conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, format_timestamp()),
                )
                current = version

            await conn.commit()

        await self._load_dimension()
        return current

    async def _load_dimension(self) -> None:
        async with self._storage_errors("load dimension"):
            async with self._conn.execute(
                "SELECT length(embedding) FROM embeddings LIMIT 1"
            ) as cursor:
                row = await cursor.fetchone()
        self._dimension = row[0] // 4 if row else None

    # ----------------------------------------
    # Row Mapping
    # ----------------------------------------

    @staticmethod
    def _row_to_record(row: Any) -> EmbeddingRecord:
        return EmbeddingRecord(
            id=row["id"],
            embedding=deserialize_embedding(row["embedding"]),
            path=row["path"],
            line=row["line"],
            timestamp=row["timestamp"],
            role=Role(row["role"]),
            context_id=row["context_id"],
            pinned=bool(row["pinned"]),
            created_at=row["created_at"],
        )

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[EmbeddingRecord]:
        async with self._storage_errors("query"):
            async with self._conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def _fetch_one(self, query: str, params: tuple = ()) -> Optional[EmbeddingRecord]:
        async with self._storage_errors("query"):
            async with self._conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    # ----------------------------------------
    # Writes
    # ----------------------------------------

    async def insert(self, record: EmbeddingRecord) -> EmbeddingRecord:
        conn = self._conn
        if not record.embedding:
            raise StorageError(
                "Cannot store an empty embedding",
                details={"path": record.path, "line": record.line},
                recoverable=False,
            )

        async with self._write_lock:
            if self._dimension is not None and record.dimension != self._dimension:
                raise DimensionMismatchError(
                    expected=self._dimension,
                    actual=record.dimension,
                    details={"path": record.path, "line": record.line},
                )

            existing = await self.get_by_path_and_line(record.path, record.line)
            if existing is not None:
                raise DuplicateKeyError(
                    f"Location {record.path}:{record.line} is already indexed",
                    path=record.path,
                    line=record.line,
                    record_id=existing.id,
                )
            if await self.get_by_id(record.id) is not None:
                raise DuplicateKeyError(
                    f"Record id {record.id} already exists",
                    record_id=record.id,
                )

            if record.created_at is None:
                record.created_at = format_timestamp()

            try:
                await conn.execute(
                    f"INSERT INTO embeddings ({_SELECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        serialize_embedding(record.embedding),
                        record.path,
                        record.line,
                        record.timestamp,
                        record.role.value,
                        record.context_id,
                        int(record.pinned),
                        record.created_at,
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                raise DuplicateKeyError(
                    f"Constraint violation inserting {record.path}:{record.line}",
                    path=record.path,
                    line=record.line,
                    record_id=record.id,
                    cause=e,
                ) from e
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Vector store insert failed: {e}",
                    details={"operation": "insert", "db_path": self.db_path},
                    cause=e,
                ) from e

            if self._dimension is None:
                self._dimension = record.dimension

        logger.debug(f"Inserted embedding {record.id} for {record.path}:{record.line}")
        return record

    async def update_pinned(self, record_id: str, pinned: bool) -> bool:
        conn = self._conn
        async with self._write_lock, self._storage_errors("update_pinned"):
            cursor = await conn.execute(
                "UPDATE embeddings SET pinned = ? WHERE id = ?",
                (int(pinned), record_id),
            )
            await conn.commit()
            affected = cursor.rowcount
            await cursor.close()
        return affected > 0

    async def delete(self, record_id: str) -> int:
        conn = self._conn
        async with self._write_lock, self._storage_errors("delete"):
            cursor = await conn.execute("DELETE FROM embeddings WHERE id = ?", (record_id,))
            await conn.commit()
            deleted = cursor.rowcount
            await cursor.close()
        return deleted

    async def delete_by_context_id(self, context_id: str) -> int:
        conn = self._conn
        async with self._write_lock, self._storage_errors("delete_by_context_id"):
            cursor = await conn.execute(
                "DELETE FROM embeddings WHERE context_id = ?", (context_id,)
            )
            await conn.commit()
            deleted = cursor.rowcount
            await cursor.close()
        if deleted:
            logger.info(f"Purged {deleted} embeddings for context {context_id}")
        return deleted

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def get_by_id(self, record_id: str) -> Optional[EmbeddingRecord]:
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM embeddings WHERE id = ?", (record_id,)
        )

    async def get_by_path_and_line(self, path: str, line: int) -> Optional[EmbeddingRecord]:
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM embeddings WHERE path = ? AND line = ?",
            (path, line),
        )

    async def get_by_context_id(self, context_id: str) -> list[EmbeddingRecord]:
        return await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM embeddings WHERE context_id = ? "
            "ORDER BY timestamp ASC",
            (context_id,),
        )

    async def get_all(self) -> list[EmbeddingRecord]:
        return await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM embeddings ORDER BY timestamp ASC"
        )

    async def get_recent(self, n: int) -> list[EmbeddingRecord]:
        if n <= 0:
            return []
        return await self._fetch_all(
            f"""
            SELECT {_SELECT_COLUMNS} FROM (
                SELECT rowid AS rid, {_SELECT_COLUMNS} FROM embeddings
                ORDER BY rowid DESC LIMIT ?
            ) ORDER BY rid ASC
            """,
            (n,),
        )

    async def get_pinned(self) -> list[EmbeddingRecord]:
        return await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM embeddings WHERE pinned = 1 ORDER BY timestamp ASC"
        )

    async def count(self) -> int:
        async with self._storage_errors("count"):
            async with self._conn.execute("SELECT COUNT(*) FROM embeddings") as cursor:
                row = await cursor.fetchone()
        return row[0]

    async def search_similar(
        self,
        query: list[float],
        limit: int = 10,
        exclude_context_id: Optional[str] = None,
    ) -> list[SimilarityMatch]:
        """Linear cosine scan over every stored vector.

        Args:
            query: Query embedding
            limit: Maximum matches to return
            exclude_context_id: Skip records from this conversation

        Returns:
            Matches sorted by similarity, highest first
        """
        if limit <= 0:
            return []

        if exclude_context_id is not None:
            records = await self._fetch_all(
                f"SELECT {_SELECT_COLUMNS} FROM embeddings WHERE context_id != ?",
                (exclude_context_id,),
            )
        else:
            records = await self._fetch_all(f"SELECT {_SELECT_COLUMNS} FROM embeddings")

        matches = [
            SimilarityMatch(record=record, similarity=cosine_similarity(query, record.embedding))
            for record in records
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]
