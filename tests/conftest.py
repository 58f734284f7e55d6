"""Shared fakes for the index tests."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Iterable, List, Sequence

import numpy as np
import pytest

from notefinder.index.chunker import RecordingChunker
from notefinder.index.indexer import SearchIndexService
from notefinder.index.lexical import BM25IndexManager, BM25SearchService
from notefinder.index.storage import SQLiteVectorStore
from notefinder.models import IndexedChunk, Recording

DIMENSION = 16


class FakeEmbedder:
    """Deterministic embedder: the same text always maps to the same vector."""

    def __init__(self, dimension: int = DIMENSION) -> None:
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        vector = np.random.default_rng(seed).standard_normal(self.dimension)
        return (vector / np.linalg.norm(vector)).astype("float32")

    def embed(self, texts: Iterable[str]) -> np.ndarray:
        texts = list(texts)
        self.calls.append(texts)
        if not texts:
            return np.empty((0, self.dimension), dtype="float32")
        return np.vstack([self._vector(text) for text in texts])

    def embed_query(self, text: str) -> np.ndarray:
        return self._vector(text)


class FakeStorage:
    """In-memory recording source that yields to the loop on every fetch."""

    def __init__(self, recordings: Sequence[Recording] = ()) -> None:
        self.recordings = list(recordings)
        self.calls = 0
        self.error: Exception | None = None

    async def get_recordings(self) -> List[Recording]:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return list(self.recordings)


class SpyChunker(RecordingChunker):
    """Chunker that records which recordings it saw and can fail on demand."""

    def __init__(self, embedder: FakeEmbedder, fail_ids: Iterable[str] = ()) -> None:
        super().__init__(embedder, max_chunk_chars=200, overlap_sentences=1, overlap_chars=40)
        self.chunked: List[str] = []
        self.fail_ids = set(fail_ids)

    async def chunk_recording(self, recording: Recording) -> List[IndexedChunk]:
        self.chunked.append(recording.id)
        if recording.id in self.fail_ids:
            raise RuntimeError(f"embedding failed for {recording.id}")
        return await super().chunk_recording(recording)


def make_recording(recording_id: str, **fields) -> Recording:
    fields.setdefault("title", f"Recording {recording_id}")
    fields.setdefault("transcript", f"This is the transcript of {recording_id}. It has two sentences.")
    return Recording(id=recording_id, **fields)


def make_chunk(recording_id: str, field: str, index: int, vector: Sequence[float]) -> IndexedChunk:
    return IndexedChunk(
        recording_id=recording_id,
        field=field,
        chunk_index=index,
        chunk_text=f"{recording_id} {field} {index}",
        embedding=np.asarray(vector, dtype="float32"),
    )


def unit(index: int, dimension: int = DIMENSION) -> np.ndarray:
    vector = np.zeros(dimension, dtype="float32")
    vector[index] = 1.0
    return vector


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path: Path):
    vector_store = SQLiteVectorStore(tmp_path / "index.db", dimension=DIMENSION)
    vector_store.initialize()
    yield vector_store
    vector_store.close()


class ServiceHarness:
    """A SearchIndexService wired to fakes, with separate corpus sources
    for the service and the lexical manager so fetches can be counted."""

    def __init__(self, store: SQLiteVectorStore, recordings: Sequence[Recording]) -> None:
        self.embedder = FakeEmbedder()
        self.storage = FakeStorage(recordings)
        self.lexical_storage = FakeStorage(recordings)
        self.chunker = SpyChunker(self.embedder)
        self.manager = BM25IndexManager(BM25SearchService(), self.lexical_storage)
        self.store = store
        self.service = SearchIndexService(store, self.manager, self.chunker, self.storage)

    def set_recordings(self, recordings: Sequence[Recording]) -> None:
        self.storage.recordings = list(recordings)
        self.lexical_storage.recordings = list(recordings)


@pytest.fixture
def harness(store: SQLiteVectorStore) -> ServiceHarness:
    return ServiceHarness(store, [])
