"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

from notefinder.embedding.encoder import DEFAULT_DIMENSION, DEFAULT_MODEL


def _get_app_dir() -> Path:
    return Path.home() / "Documents" / "NoteFinder"


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = _get_app_dir() / "notefinder.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/notefinder.db")
    if local_db.exists():
        return local_db

    return user_db


def _get_default_recordings_dir() -> Path:
    return _get_app_dir() / "captures"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    recordings_dir: Path | None = None
    model_name: str = DEFAULT_MODEL
    dimension: int = DEFAULT_DIMENSION
    max_chunk_chars: int = 1200
    overlap_sentences: int = 1
    overlap_chars: int = 200

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.recordings_dir is None:
            self.recordings_dir = _get_default_recordings_dir()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def resolve_recordings_dir(self, base_dir: Path | None = None) -> Path:
        if self.recordings_dir is None:
            self.recordings_dir = _get_default_recordings_dir()
        path = Path(self.recordings_dir).expanduser()
        if path.is_absolute() or base_dir is None:
            return path
        return base_dir / path
