"""Loading recordings from a folder of markdown captures.

Each ``*.md`` file is one recording::

    ---
    id: 2025-11-05_14-30-22
    title: Weekly planning
    created: 2025-11-05T14:30:22
    duration: 95
    tags:
      - work
    ---

    # Weekly planning

    ## Transcription

    Transcript text...
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from notefinder.models import Recording
from notefinder.utils.files import iter_markdown_paths

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
MAX_TITLE_CHARS = 50


def split_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Return the YAML frontmatter mapping and the remaining body."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, content
    for end, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            meta = yaml.safe_load("\n".join(lines[1:end])) or {}
            if not isinstance(meta, dict):
                raise ValueError("Frontmatter must be a mapping")
            return meta, "\n".join(lines[end + 1 :])
    return {}, content


def extract_transcript(body: str, title: str) -> str:
    """Drop the ``# Title`` and ``## Transcription`` headings from the body."""
    lines = body.strip().splitlines()
    if lines and lines[0].startswith("# ") and (not title or lines[0][2:].strip() == title):
        lines = lines[1:]
    text = "\n".join(lines).strip()
    heading = "## Transcription"
    if text.startswith(heading):
        text = text[len(heading) :].strip()
    return text


def title_from_transcript(transcript: str) -> str:
    if not transcript:
        return "Untitled"
    first_line = transcript.splitlines()[0].strip()
    if len(first_line) <= MAX_TITLE_CHARS:
        return first_line
    return first_line[: MAX_TITLE_CHARS - 3] + "..."


def _to_local_naive(value: datetime) -> datetime:
    """Convert offset-aware times to naive local time, like file-name stamps."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _parse_timestamp(value: Any, path: Path) -> datetime | None:
    if isinstance(value, datetime):
        return _to_local_naive(value)
    if isinstance(value, str):
        try:
            return _to_local_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    try:
        return datetime.strptime(path.stem, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def load_recording(path: Path) -> Recording:
    content = path.read_text(encoding="utf-8")
    meta, body = split_frontmatter(content)

    title = _as_text(meta.get("title"))
    transcript = extract_transcript(body, title)
    tags = meta.get("tags") or []
    if isinstance(tags, str):
        tags = [tag.strip() for tag in tags.split(",")]

    return Recording(
        id=_as_text(meta.get("id")) or path.stem,
        title=title or title_from_transcript(transcript),
        transcript=transcript,
        summary=_as_text(meta.get("summary")),
        context=_as_text(meta.get("context")),
        tags=[str(tag) for tag in tags if str(tag).strip()],
        timestamp=_parse_timestamp(meta.get("created"), path),
        duration=float(meta.get("duration") or 0),
        file_size_kb=path.stat().st_size / 1024,
        file_path=path,
    )


def load_recordings(captures_dir: Path) -> List[Recording]:
    """Load every readable recording under ``captures_dir``, newest first."""
    recordings: List[Recording] = []
    for path in iter_markdown_paths([captures_dir]):
        try:
            recordings.append(load_recording(path))
        except (OSError, UnicodeDecodeError, ValueError, yaml.YAMLError) as exc:
            LOGGER.warning("Skipping unreadable recording %s: %s", path, exc)

    recordings.sort(key=lambda r: r.id)
    recordings.sort(key=lambda r: r.timestamp or datetime.min, reverse=True)
    return recordings


class MarkdownRecordingStorage:
    """Recording source backed by a directory of markdown files."""

    def __init__(self, captures_dir: Path) -> None:
        self.captures_dir = Path(captures_dir)

    async def get_recordings(self) -> List[Recording]:
        if not self.captures_dir.is_dir():
            LOGGER.info("Captures directory %s does not exist yet", self.captures_dir)
            return []
        recordings = await asyncio.to_thread(load_recordings, self.captures_dir)
        LOGGER.debug("Loaded %d recordings from %s", len(recordings), self.captures_dir)
        return recordings
