"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator


def iter_markdown_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield markdown paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_markdown_paths(sorted(item.rglob("*.md")))
        elif item.is_file() and item.suffix.lower() == ".md":
            yield item
