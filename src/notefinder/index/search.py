"""Query interface over the semantic and keyword indexes."""

from __future__ import annotations

from enum import Enum
from typing import List

from notefinder.embedding.encoder import Embedder
from notefinder.index.lexical import BM25IndexManager
from notefinder.index.storage import VectorStore
from notefinder.models import BM25SearchResult, VectorSearchResult


class SearchMode(str, Enum):
    semantic = "semantic"
    keyword = "keyword"


class Searcher:
    """High-level API to query the vector store and the BM25 index."""

    def __init__(
        self, embedder: Embedder, store: VectorStore, bm25_manager: BM25IndexManager
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.bm25_manager = bm25_manager

    def semantic(
        self, query: str, *, limit: int = 10, min_score: float = 0.0
    ) -> List[VectorSearchResult]:
        if not query.strip():
            return []
        embedding = self.embedder.embed_query(query)
        return self.store.search(embedding, limit=limit, min_score=min_score)

    async def keyword(self, query: str, *, limit: int = 10) -> List[BM25SearchResult]:
        """BM25 search; builds the index first if it was invalidated."""
        if not query.strip():
            return []
        await self.bm25_manager.ensure_index_ready()
        return self.bm25_manager.search_service.search(query, limit=limit)
