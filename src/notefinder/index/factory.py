"""Wiring of the indexing components from an AppConfig."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from notefinder.config import AppConfig
from notefinder.embedding.encoder import Embedder, EmbeddingConfig, EmbeddingModel
from notefinder.index.chunker import RecordingChunker
from notefinder.index.indexer import SearchIndexService
from notefinder.index.lexical import BM25IndexManager, BM25SearchService
from notefinder.index.search import Searcher
from notefinder.index.storage import SQLiteVectorStore
from notefinder.ingestion.markdown_loader import MarkdownRecordingStorage


@dataclass(slots=True)
class Components:
    service: SearchIndexService
    searcher: Searcher
    store: SQLiteVectorStore

    def close(self) -> None:
        self.service.dispose()


def build_components(
    config: AppConfig, *, embedder: Embedder | None = None, base_dir: Path | None = None
) -> Components:
    """Create one fully wired index service; every component is a fresh instance."""
    if embedder is None:
        embedder = EmbeddingModel(
            EmbeddingConfig(model_name=config.model_name, dimension=config.dimension)
        )

    storage = MarkdownRecordingStorage(config.resolve_recordings_dir(base_dir))
    store = SQLiteVectorStore(config.resolve_db_path(base_dir), dimension=config.dimension)
    store.initialize()
    bm25_manager = BM25IndexManager(BM25SearchService(), storage)
    chunker = RecordingChunker(
        embedder,
        max_chunk_chars=config.max_chunk_chars,
        overlap_sentences=config.overlap_sentences,
        overlap_chars=config.overlap_chars,
    )
    service = SearchIndexService(store, bm25_manager, chunker, storage)
    return Components(
        service=service,
        searcher=Searcher(embedder, store, bm25_manager),
        store=store,
    )
