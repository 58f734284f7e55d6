"""FastAPI application exposing the NoteFinder index."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from notefinder.config import AppConfig
from notefinder.index.factory import Components, build_components
from notefinder.index.search import SearchMode

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="NoteFinder", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    mode: SearchMode = SearchMode.semantic
    limit: int = 10
    min_score: float = 0.0


class SearchHit(BaseModel):
    recording_id: str
    score: float
    field: str
    text: str


async def get_components() -> Components:
    """Return the index components, building them on first use.

    Runs on the event loop thread, which owns the SQLite connection.
    """
    components = getattr(app.state, "components", None)
    if components is None:
        components = build_components(AppConfig(), base_dir=Path.cwd())
        app.state.components = components
    return components


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    components = getattr(app.state, "components", None)
    if components is not None:
        components.close()
        app.state.components = None


def _sync_response(stats: Any) -> dict[str, Any]:
    return {
        "status": "ok",
        "stats": {
            "indexed": stats.indexed,
            "unchanged": stats.unchanged,
            "removed": stats.removed,
            "failed": stats.failed,
            "failed_ids": list(stats.failed_ids),
        },
    }


@app.post("/sync")
async def sync_indexes(components: Components = Depends(get_components)) -> dict[str, Any]:
    try:
        stats = await components.service.sync_indexes()
    except Exception as exc:
        LOGGER.exception("Sync failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return _sync_response(stats)


@app.post("/reindex")
async def reindex(components: Components = Depends(get_components)) -> dict[str, Any]:
    try:
        stats = await components.service.force_full_reindex()
    except Exception as exc:
        LOGGER.exception("Reindex failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return _sync_response(stats)


@app.get("/status")
async def status(components: Components = Depends(get_components)) -> dict[str, Any]:
    service = components.service
    return {
        "status": service.status.value,
        "progress": service.progress,
        "indexed_count": service.indexed_count,
        "total_to_index": service.total_to_index,
        "error": service.error_message,
    }


@app.get("/stats")
async def stats(components: Components = Depends(get_components)) -> dict[str, Any]:
    return components.service.get_stats()


@app.post("/search")
async def search(
    payload: SearchPayload, components: Components = Depends(get_components)
) -> dict[str, List[SearchHit]]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    limit = max(1, min(payload.limit, 50))
    if payload.mode is SearchMode.semantic:
        results = components.searcher.semantic(query, limit=limit, min_score=payload.min_score)
        hits = [
            SearchHit(recording_id=r.recording_id, score=r.score, field=r.field, text=r.chunk_text)
            for r in results
        ]
    else:
        matches = await components.searcher.keyword(query, limit=limit)
        hits = [
            SearchHit(
                recording_id=r.recording.id,
                score=r.score,
                field=",".join(sorted(r.matched_fields)),
                text=r.recording.title,
            )
            for r in matches
        ]
    return {"results": hits}


@app.delete("/recordings/{recording_id}")
async def remove_recording(
    recording_id: str, components: Components = Depends(get_components)
) -> dict[str, str]:
    if not components.service.remove_recording(recording_id):
        raise HTTPException(status_code=404, detail=f"Recording {recording_id} is not indexed")
    return {"status": "ok", "removed_id": recording_id}
