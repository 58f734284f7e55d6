"""Recording chunking and embedding."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence

import numpy as np

from notefinder.embedding.encoder import Embedder
from notefinder.models import SEARCHABLE_FIELDS, ChunkCandidate, IndexedChunk, Recording
from notefinder.utils.text import chunk_text, normalize_whitespace, pack_sentences, split_sentences

LOGGER = logging.getLogger(__name__)


class RecordingChunker:
    """Turns a recording into embedded chunks ready for the vector store.

    Title, summary, context and tags are short and become one chunk each.
    The transcript is split into sentences and packed into windows of at most
    ``max_chunk_chars`` characters, carrying ``overlap_sentences`` sentences
    over between neighbouring windows.
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        max_chunk_chars: int = 1200,
        overlap_sentences: int = 1,
        overlap_chars: int = 200,
    ) -> None:
        if max_chunk_chars <= overlap_chars:
            raise ValueError("max_chunk_chars must be larger than overlap_chars")
        self.embedder = embedder
        self.max_chunk_chars = max_chunk_chars
        self.overlap_sentences = overlap_sentences
        self.overlap_chars = overlap_chars

    def split_recording(self, recording: Recording) -> List[ChunkCandidate]:
        """Chunk every searchable field of ``recording`` without embedding."""
        candidates: List[ChunkCandidate] = []

        for field in SEARCHABLE_FIELDS:
            if field == "transcript":
                texts = self._split_transcript(recording.transcript)
            elif field == "tags":
                joined = ", ".join(tag.strip() for tag in recording.tags if tag.strip())
                texts = [joined] if joined else []
            else:
                text = normalize_whitespace(getattr(recording, field))
                texts = [text] if text else []
            for index, text in enumerate(texts):
                candidates.append(ChunkCandidate(recording.id, field, index, text))

        return candidates

    def _split_transcript(self, transcript: str) -> List[str]:
        sentences: List[str] = []
        for sentence in split_sentences(transcript):
            sentence = normalize_whitespace(sentence)
            if len(sentence) > self.max_chunk_chars:
                sentences.extend(
                    chunk_text(sentence, max_chars=self.max_chunk_chars, overlap=self.overlap_chars)
                )
            elif sentence:
                sentences.append(sentence)
        return pack_sentences(
            sentences, max_chars=self.max_chunk_chars, overlap=self.overlap_sentences
        )

    async def chunk_recording(self, recording: Recording) -> List[IndexedChunk]:
        """Chunk and embed one recording.

        Embedding runs in a worker thread so the event loop stays responsive
        while the model computes.
        """
        candidates = self.split_recording(recording)
        if not candidates:
            LOGGER.debug("No searchable content in %s", recording.id)
            return []

        embeddings = await asyncio.to_thread(
            self.embedder.embed, [candidate.chunk_text for candidate in candidates]
        )
        chunks = _attach_embeddings(candidates, embeddings)
        LOGGER.debug("Chunked %s into %d chunks", recording.id, len(chunks))
        return chunks

    async def chunk_recordings(self, recordings: Sequence[Recording]) -> List[IndexedChunk]:
        all_chunks: List[IndexedChunk] = []
        for recording in recordings:
            all_chunks.extend(await self.chunk_recording(recording))
        return all_chunks


def _attach_embeddings(
    candidates: Sequence[ChunkCandidate], embeddings: np.ndarray
) -> List[IndexedChunk]:
    vectors = np.asarray(embeddings, dtype="float32")
    if vectors.ndim != 2 or vectors.shape[0] != len(candidates):
        raise ValueError(
            f"Embedder returned {vectors.shape} for {len(candidates)} chunks"
        )
    return [
        IndexedChunk(
            recording_id=candidate.recording_id,
            field=candidate.field,
            chunk_index=candidate.chunk_index,
            chunk_text=candidate.chunk_text,
            embedding=vector,
        )
        for candidate, vector in zip(candidates, vectors)
    ]
