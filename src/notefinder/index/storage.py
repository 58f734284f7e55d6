"""Vector store contract and its SQLite implementation."""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

import numpy as np

from notefinder.models import IndexedChunk, ManifestEntry, VectorSearchResult

LOGGER = logging.getLogger(__name__)


class VectorStore(ABC):
    """Persistent chunk + embedding storage with a per-recording manifest.

    The manifest records the content hash a recording was indexed with; an
    entry exists exactly when the recording has chunks.
    """

    dimension: int

    @abstractmethod
    def initialize(self) -> None: ...

    @abstractmethod
    def add_chunks(self, chunks: Sequence[IndexedChunk]) -> None: ...

    @abstractmethod
    def remove_chunks(self, recording_id: str) -> bool: ...

    @abstractmethod
    def is_indexed(self, recording_id: str) -> bool: ...

    @abstractmethod
    def get_indexed_recording_ids(self) -> List[str]: ...

    @abstractmethod
    def get_content_hash(self, recording_id: str) -> str | None: ...

    @abstractmethod
    def update_manifest(self, recording_id: str, content_hash: str, chunk_count: int) -> None: ...

    @abstractmethod
    def search(
        self, query_embedding: np.ndarray, *, limit: int = 20, min_score: float = 0.0
    ) -> List[VectorSearchResult]: ...

    @abstractmethod
    def get_stats(self) -> Dict[str, int]: ...

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Group several writes into one atomic unit where the backend allows it."""
        yield self


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


class SQLiteVectorStore(VectorStore):
    """SQLite persistence with brute-force cosine similarity search.

    Embeddings are L2-normalized before they are written, so a search is a
    single matrix-vector product against the stored blobs.
    """

    def __init__(self, db_path: Path, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        self.initialize()
        assert self._conn is not None
        return self._conn

    def initialize(self) -> None:
        if self._conn is not None:
            return
        LOGGER.debug("Opening vector store at %s", self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    def close(self) -> None:
        if self._conn is None:
            return
        LOGGER.debug("Closing vector store at %s", self.db_path)
        self._conn.close()
        self._conn = None
        self._tx_depth = 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error.

        Nested scopes join the outermost one; only it commits or rolls back.
        """
        conn = self.connection
        self._tx_depth += 1
        try:
            yield conn
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.rollback()
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.commit()

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recording_id TEXT NOT NULL,
                    field TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    chunk_text TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE(recording_id, field, chunk_index)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_recording
                    ON chunks(recording_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_manifest (
                    recording_id TEXT PRIMARY KEY,
                    content_hash TEXT NOT NULL,
                    chunk_count INTEGER NOT NULL,
                    indexed_at TEXT NOT NULL
                )
                """
            )

    def _validate(self, chunks: Sequence[IndexedChunk]) -> List[np.ndarray]:
        vectors = []
        seen: set[tuple[str, str, int]] = set()
        for chunk in chunks:
            if chunk.key in seen:
                raise ValueError(f"Duplicate chunk {chunk.key} in batch")
            seen.add(chunk.key)
            vector = np.asarray(chunk.embedding, dtype="float32")
            if vector.ndim != 1 or vector.shape[0] != self.dimension:
                raise ValueError(
                    f"Embedding for {chunk.key} has shape {vector.shape}, "
                    f"expected ({self.dimension},)"
                )
            vectors.append(_normalize(vector))
        return vectors

    def add_chunks(self, chunks: Sequence[IndexedChunk]) -> None:
        """Replace the chunk sets of the recordings in ``chunks``.

        Every embedding is checked before anything is written.
        """
        if not chunks:
            return
        vectors = self._validate(chunks)

        with self.transaction() as conn:
            for recording_id in {chunk.recording_id for chunk in chunks}:
                conn.execute("DELETE FROM chunks WHERE recording_id = ?", (recording_id,))
            conn.executemany(
                """
                INSERT OR REPLACE INTO chunks
                    (recording_id, field, chunk_index, chunk_text, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        *chunk.key,
                        chunk.chunk_text,
                        sqlite3.Binary(vector.astype("<f4").tobytes()),
                        chunk.created_at.isoformat(),
                    )
                    for chunk, vector in zip(chunks, vectors)
                ],
            )
        LOGGER.debug("Stored %d chunks", len(chunks))

    def remove_chunks(self, recording_id: str) -> bool:
        with self.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM chunks WHERE recording_id = ?", (recording_id,)
            ).rowcount
            conn.execute("DELETE FROM index_manifest WHERE recording_id = ?", (recording_id,))
        if deleted:
            LOGGER.debug("Removed %d chunks for %s", deleted, recording_id)
        return deleted > 0

    def is_indexed(self, recording_id: str) -> bool:
        row = self.connection.execute(
            "SELECT 1 FROM chunks WHERE recording_id = ? LIMIT 1", (recording_id,)
        ).fetchone()
        return row is not None

    def get_indexed_recording_ids(self) -> List[str]:
        rows = self.connection.execute(
            "SELECT DISTINCT recording_id FROM chunks ORDER BY recording_id"
        ).fetchall()
        return [row["recording_id"] for row in rows]

    def get_content_hash(self, recording_id: str) -> str | None:
        row = self.connection.execute(
            "SELECT content_hash FROM index_manifest WHERE recording_id = ?", (recording_id,)
        ).fetchone()
        return row["content_hash"] if row else None

    def get_manifest_entry(self, recording_id: str) -> ManifestEntry | None:
        row = self.connection.execute(
            """
            SELECT recording_id, content_hash, chunk_count, indexed_at
            FROM index_manifest WHERE recording_id = ?
            """,
            (recording_id,),
        ).fetchone()
        if row is None:
            return None
        return ManifestEntry(
            recording_id=row["recording_id"],
            content_hash=row["content_hash"],
            chunk_count=row["chunk_count"],
            indexed_at=row["indexed_at"],
        )

    def update_manifest(self, recording_id: str, content_hash: str, chunk_count: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO index_manifest
                    (recording_id, content_hash, chunk_count, indexed_at)
                VALUES (?, ?, ?, ?)
                """,
                (recording_id, content_hash, chunk_count, datetime.now().isoformat()),
            )

    def search(
        self, query_embedding: np.ndarray, *, limit: int = 20, min_score: float = 0.0
    ) -> List[VectorSearchResult]:
        query = np.asarray(query_embedding, dtype="float32")
        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise ValueError(
                f"Query embedding has shape {query.shape}, expected ({self.dimension},)"
            )
        if limit <= 0:
            return []

        rows = self.connection.execute(
            "SELECT id, recording_id, field, chunk_index, chunk_text, embedding FROM chunks"
        ).fetchall()
        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="<f4") for row in rows])
        scores = np.clip(embeddings @ _normalize(query), 0.0, 1.0)

        candidates = np.flatnonzero(scores >= min_score)
        if candidates.size == 0:
            return []
        order = candidates[np.argsort(-scores[candidates], kind="stable")][:limit]

        return [
            VectorSearchResult(
                chunk_id=rows[idx]["id"],
                recording_id=rows[idx]["recording_id"],
                field=rows[idx]["field"],
                chunk_index=rows[idx]["chunk_index"],
                chunk_text=rows[idx]["chunk_text"],
                score=float(scores[idx]),
            )
            for idx in order
        ]

    def get_stats(self) -> Dict[str, int]:
        conn = self.connection
        total_chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        total_recordings = conn.execute(
            "SELECT COUNT(DISTINCT recording_id) FROM chunks"
        ).fetchone()[0]
        total_size = 0
        for suffix in ("", "-wal"):
            path = Path(f"{self.db_path}{suffix}")
            if path.exists():
                total_size += path.stat().st_size
        return {
            "total_chunks": total_chunks,
            "total_recordings": total_recordings,
            "total_size": total_size,
        }

    def clear(self) -> None:
        LOGGER.info("Clearing vector store")
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM index_manifest")
