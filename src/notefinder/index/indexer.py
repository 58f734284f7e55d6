"""Index synchronization between the recording corpus and the search indexes."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Protocol

from notefinder.index.chunker import RecordingChunker
from notefinder.index.hasher import ContentHasher
from notefinder.index.lexical import BM25IndexManager
from notefinder.index.storage import VectorStore
from notefinder.models import IndexedChunk, Recording
from notefinder.utils.concurrency import SingleFlight

LOGGER = logging.getLogger(__name__)

Listener = Callable[[], None]


class RecordingStorage(Protocol):
    async def get_recordings(self) -> List[Recording]: ...


class IndexingStatus(str, enum.Enum):
    IDLE = "idle"
    # Comparing content hashes against the manifest
    SYNCING = "syncing"
    # Chunking, embedding and writing changed recordings
    INDEXING = "indexing"
    ERROR = "error"


@dataclass(slots=True)
class SyncStats:
    indexed: int = 0
    unchanged: int = 0
    removed: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)

    def increment(self, status: str, recording_id: str) -> None:
        if status == "indexed":
            self.indexed += 1
        elif status == "unchanged":
            self.unchanged += 1
        elif status == "removed":
            self.removed += 1
        else:
            self.failed += 1
            self.failed_ids.append(recording_id)


class SearchIndexService:
    """Keeps the vector store and the BM25 index in sync with storage.

    Only recordings whose content hash differs from the manifest are
    re-chunked and re-embedded. ``sync_indexes`` is single-flight: callers
    that arrive while a sync runs share its outcome.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        bm25_manager: BM25IndexManager,
        chunker: RecordingChunker,
        storage: RecordingStorage,
        hasher: ContentHasher | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.bm25_manager = bm25_manager
        self.chunker = chunker
        self.storage = storage
        self.hasher = hasher or ContentHasher()

        self._status = IndexingStatus.IDLE
        self._error_message: str | None = None
        self._total_to_index = 0
        self._indexed_count = 0
        self._listeners: List[Listener] = []
        self._sync_flight: SingleFlight[SyncStats] = SingleFlight()

    @property
    def status(self) -> IndexingStatus:
        return self._status

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def total_to_index(self) -> int:
        return self._total_to_index

    @property
    def indexed_count(self) -> int:
        return self._indexed_count

    @property
    def progress(self) -> float:
        if self._total_to_index <= 0:
            return 0.0
        return self._indexed_count / self._total_to_index

    @property
    def is_syncing(self) -> bool:
        return self._sync_flight.in_flight

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                LOGGER.exception("Index status listener %r failed", listener)

    def _set_status(self, status: IndexingStatus, error_message: str | None = None) -> None:
        self._status = status
        self._error_message = error_message
        self._notify_listeners()

    async def sync_indexes(self) -> SyncStats:
        """Reconcile both indexes with the current recording corpus."""
        if self._sync_flight.in_flight:
            LOGGER.debug("Sync already in progress, waiting for it")
        return await self._sync_flight.run(self._do_sync)

    async def _do_sync(self) -> SyncStats:
        stats = SyncStats()
        try:
            LOGGER.info("Starting index sync")
            self._set_status(IndexingStatus.SYNCING)

            recordings = await self.storage.get_recordings()
            current_ids = {recording.id for recording in recordings}
            indexed_ids = self.vector_store.get_indexed_recording_ids()

            to_index: list[tuple[Recording, str]] = []
            for recording in recordings:
                content_hash = self.hasher.compute_hash(recording)
                stored_hash = self.vector_store.get_content_hash(recording.id)
                if stored_hash == content_hash:
                    stats.increment("unchanged", recording.id)
                    continue
                if stored_hash is None:
                    LOGGER.debug("New recording: %s", recording.id)
                else:
                    LOGGER.debug("Modified recording: %s", recording.id)
                to_index.append((recording, content_hash))
            to_remove = [recording_id for recording_id in indexed_ids if recording_id not in current_ids]

            LOGGER.info(
                "Found %d recordings: %d to index, %d to remove, %d unchanged",
                len(recordings),
                len(to_index),
                len(to_remove),
                stats.unchanged,
            )

            self._total_to_index = len(to_index) + len(to_remove)
            self._indexed_count = 0
            self._set_status(IndexingStatus.INDEXING)

            for recording, content_hash in to_index:
                try:
                    chunks = await self.chunker.chunk_recording(recording)
                    self._replace_chunks(recording.id, chunks, content_hash)
                except Exception:
                    LOGGER.exception("Failed to index recording %s", recording.id)
                    stats.increment("failed", recording.id)
                else:
                    stats.increment("indexed", recording.id)
                # Failures count as processed so progress reaches 1.0.
                self._indexed_count += 1
                self._notify_listeners()

            for recording_id in to_remove:
                try:
                    self.vector_store.remove_chunks(recording_id)
                except Exception:
                    LOGGER.exception("Failed to remove recording %s", recording_id)
                    stats.increment("failed", recording_id)
                else:
                    stats.increment("removed", recording_id)
                self._indexed_count += 1
                self._notify_listeners()

            await self.bm25_manager.rebuild_index()

            self._set_status(IndexingStatus.IDLE)
            LOGGER.info(
                "Sync complete. Indexed: %d, removed: %d, failed: %d",
                stats.indexed,
                stats.removed,
                stats.failed,
            )
            return stats
        except Exception as exc:
            LOGGER.error("Index sync failed: %s", exc)
            self._set_status(IndexingStatus.ERROR, str(exc))
            raise

    def _replace_chunks(
        self, recording_id: str, chunks: List[IndexedChunk], content_hash: str
    ) -> None:
        """Swap a recording's chunk set and manifest entry in one transaction."""
        with self.vector_store.transaction():
            self.vector_store.remove_chunks(recording_id)
            if not chunks:
                LOGGER.warning("No chunks generated for %s", recording_id)
                return
            self.vector_store.add_chunks(chunks)
            self.vector_store.update_manifest(recording_id, content_hash, len(chunks))
        LOGGER.debug("Indexed %s: %d chunks", recording_id, len(chunks))

    async def index_recording(self, recording: Recording) -> None:
        """Re-index one recording immediately, e.g. after the user saves it."""
        LOGGER.info("Indexing recording %s", recording.id)
        content_hash = self.hasher.compute_hash(recording)
        chunks = await self.chunker.chunk_recording(recording)
        self._replace_chunks(recording.id, chunks, content_hash)
        self.bm25_manager.invalidate()

    def remove_recording(self, recording_id: str) -> bool:
        LOGGER.info("Removing recording %s", recording_id)
        removed = self.vector_store.remove_chunks(recording_id)
        self.bm25_manager.invalidate()
        return removed

    async def force_full_reindex(self) -> SyncStats:
        """Drop everything and rebuild; every recording is re-embedded.

        A sync already in flight diffed against the old manifest, so it is
        awaited first rather than joined.
        """
        LOGGER.info("Full reindex requested")
        while self._sync_flight.in_flight:
            LOGGER.debug("Waiting for the running sync before reindexing")
            try:
                await self.sync_indexes()
            except Exception as exc:
                LOGGER.warning("Running sync failed before reindex: %s", exc)
        self.vector_store.clear()
        self.bm25_manager.invalidate()
        return await self.sync_indexes()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "vector_store": self.vector_store.get_stats(),
            "lexical": self.bm25_manager.get_stats(),
            "status": self._status.value,
            "progress": self.progress,
            "indexed_count": self._indexed_count,
            "total_to_index": self._total_to_index,
            "error": self._error_message,
        }

    def dispose(self) -> None:
        self._listeners.clear()
        self.vector_store.close()
