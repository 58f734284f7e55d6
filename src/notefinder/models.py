"""Core NoteFinder data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Set

import numpy as np

SEARCHABLE_FIELDS = ("title", "summary", "context", "tags", "transcript")


@dataclass(slots=True)
class Recording:
    """A voice note as loaded from storage.

    Only ``title``, ``summary``, ``context``, ``tags`` and ``transcript`` are
    searchable; the remaining attributes are metadata and never reach the index.
    """

    id: str
    title: str = ""
    transcript: str = ""
    summary: str = ""
    context: str = ""
    tags: List[str] = field(default_factory=list)
    timestamp: datetime | None = None
    duration: float = 0.0
    file_size_kb: float = 0.0
    file_path: Path | None = None


@dataclass(slots=True)
class ChunkCandidate:
    """Span of text from one searchable field, before embedding."""

    recording_id: str
    field: str
    chunk_index: int
    chunk_text: str


@dataclass(slots=True)
class IndexedChunk:
    """Chunk of recording text paired with its embedding."""

    recording_id: str
    field: str
    chunk_index: int
    chunk_text: str
    embedding: np.ndarray = field(repr=False, compare=False)
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.recording_id, self.field, self.chunk_index)


@dataclass(slots=True)
class ManifestEntry:
    recording_id: str
    content_hash: str
    chunk_count: int
    indexed_at: str


@dataclass(slots=True)
class VectorSearchResult:
    chunk_id: int
    recording_id: str
    field: str
    chunk_index: int
    chunk_text: str
    score: float


@dataclass(slots=True)
class BM25SearchResult:
    """Keyword match over a whole recording."""

    recording: Recording
    score: float
    matched_fields: Set[str] = field(default_factory=set)
