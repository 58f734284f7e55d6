"""In-memory BM25 keyword index over the recording corpus."""

from __future__ import annotations

import logging
import math
import re
import time
import unicodedata
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Protocol, Sequence

from notefinder.models import BM25SearchResult, Recording
from notefinder.utils.concurrency import SingleFlight

LOGGER = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class RecordingSource(Protocol):
    async def get_recordings(self) -> List[Recording]: ...


def tokenize(text: str) -> List[str]:
    if not text:
        return []
    normalized = unicodedata.normalize("NFKC", text).casefold()
    return TOKEN_RE.findall(normalized)


def recording_to_document(recording: Recording) -> str:
    """Flatten the searchable fields into one document.

    The title appears twice so its terms weigh double.
    """
    parts: List[str] = []
    if recording.title:
        parts.extend([recording.title, recording.title])
    if recording.summary:
        parts.append(recording.summary)
    if recording.context:
        parts.append(recording.context)
    if recording.tags:
        parts.append(" ".join(recording.tags))
    if recording.transcript:
        parts.append(recording.transcript)
    return "\n".join(parts)


def find_matched_fields(recording: Recording, query: str) -> set[str]:
    matched: set[str] = set()
    for term in query.lower().split():
        if term in recording.title.lower():
            matched.add("title")
        if term in recording.summary.lower():
            matched.add("summary")
        if term in recording.context.lower():
            matched.add("context")
        if term in recording.transcript.lower():
            matched.add("transcript")
        if any(term in tag.lower() for tag in recording.tags):
            matched.add("tags")
    return matched


@dataclass(slots=True)
class BM25Config:
    k1: float = 1.5
    b: float = 0.75


class BM25SearchService:
    """Okapi BM25 over whole recordings, rebuilt from scratch on demand."""

    def __init__(self, config: BM25Config | None = None) -> None:
        self.config = config or BM25Config()
        self._recordings: List[Recording] | None = None
        self._term_freqs: List[Counter] = []
        self._doc_lengths: List[int] = []
        self._doc_freqs: Counter = Counter()
        self._avgdl = 0.0

    @property
    def needs_rebuild(self) -> bool:
        return self._recordings is None

    @property
    def index_size(self) -> int:
        return len(self._recordings) if self._recordings is not None else 0

    def build_index(self, recordings: Sequence[Recording]) -> None:
        started = time.perf_counter()
        term_freqs: List[Counter] = []
        doc_freqs: Counter = Counter()
        for recording in recordings:
            counts = Counter(tokenize(recording_to_document(recording)))
            term_freqs.append(counts)
            doc_freqs.update(counts.keys())

        self._term_freqs = term_freqs
        self._doc_lengths = [sum(counts.values()) for counts in term_freqs]
        self._doc_freqs = doc_freqs
        self._avgdl = sum(self._doc_lengths) / max(len(term_freqs), 1)
        self._recordings = list(recordings)
        LOGGER.debug(
            "BM25 index built for %d recordings in %.1fms",
            len(self._recordings),
            (time.perf_counter() - started) * 1000,
        )

    def _idf(self, term: str) -> float:
        n_docs = len(self._term_freqs)
        df = self._doc_freqs.get(term, 0)
        return math.log((n_docs - df + 0.5) / (df + 0.5) + 1)

    def search(self, query: str, *, limit: int = 20) -> List[BM25SearchResult]:
        if self._recordings is None:
            raise RuntimeError("Index not built. Call build_index() first.")

        terms = [term for term in set(tokenize(query)) if term in self._doc_freqs]
        if not terms or not self._recordings or limit <= 0:
            return []

        k1, b = self.config.k1, self.config.b
        avgdl = max(self._avgdl, 1e-9)
        idf = {term: self._idf(term) for term in terms}

        scored: List[tuple[float, int]] = []
        for doc_id, counts in enumerate(self._term_freqs):
            length_norm = k1 * (1 - b + b * self._doc_lengths[doc_id] / avgdl)
            score = 0.0
            for term in terms:
                tf = counts.get(term, 0)
                if tf:
                    score += idf[term] * tf * (k1 + 1) / (tf + length_norm)
            if score > 0:
                scored.append((score, doc_id))

        scored.sort(key=lambda item: (-item[0], item[1]))
        results = []
        for score, doc_id in scored[:limit]:
            recording = self._recordings[doc_id]
            results.append(
                BM25SearchResult(
                    recording=recording,
                    score=score,
                    matched_fields=find_matched_fields(recording, query),
                )
            )
        return results

    def clear(self) -> None:
        self._recordings = None
        self._term_freqs = []
        self._doc_lengths = []
        self._doc_freqs = Counter()
        self._avgdl = 0.0


class BM25IndexManager:
    """Keeps the BM25 index in step with the recording corpus.

    ``rebuild_index`` is single-flight: overlapping calls share one build.
    ``invalidate`` only marks the index stale; the next
    ``ensure_index_ready`` rebuilds it.
    """

    def __init__(self, search_service: BM25SearchService, storage: RecordingSource) -> None:
        self.search_service = search_service
        self.storage = storage
        self._flight: SingleFlight[None] = SingleFlight()
        self._last_built: datetime | None = None

    @property
    def is_building(self) -> bool:
        return self._flight.in_flight

    @property
    def last_built(self) -> datetime | None:
        return self._last_built

    @property
    def needs_rebuild(self) -> bool:
        return self.search_service.needs_rebuild

    async def ensure_index_ready(self) -> None:
        if self.search_service.needs_rebuild:
            await self.rebuild_index()

    async def rebuild_index(self) -> None:
        if self._flight.in_flight:
            LOGGER.debug("BM25 build already in progress, waiting")
        await self._flight.run(self._rebuild)

    async def _rebuild(self) -> None:
        started = time.perf_counter()
        recordings = await self.storage.get_recordings()
        self.search_service.build_index(recordings)
        self._last_built = datetime.now()
        LOGGER.info(
            "BM25 index rebuilt in %.0fms (%d recordings)",
            (time.perf_counter() - started) * 1000,
            len(recordings),
        )

    def invalidate(self) -> None:
        LOGGER.debug("Invalidating BM25 index")
        self.search_service.clear()
        self._last_built = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_built": not self.search_service.needs_rebuild,
            "is_building": self.is_building,
            "index_size": self.search_service.index_size,
            "last_built": self._last_built.isoformat() if self._last_built else None,
        }
