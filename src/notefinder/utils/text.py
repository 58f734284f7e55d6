"""Text helpers: sentence splitting and bounded chunking."""

from __future__ import annotations

import re
from typing import Iterator, List, Sequence

_ABBREVIATIONS = frozenset(
    {
        "dr", "mr", "mrs", "ms", "prof", "sr", "jr", "phd", "md", "inc",
        "corp", "ltd", "etc", "e.g", "i.e", "vs", "p.m", "a.m",
    }
)

# Terminal punctuation, optional closing quote/bracket, then whitespace.
_BOUNDARY_RE = re.compile(r"[.!?]+[\"')\]]*(?=\s)")
_LAST_WORD_RE = re.compile(r"(\S+)$")


def chunk_text(text: str, *, max_chars: int = 1200, overlap: int = 200) -> Iterator[str]:
    """Split text into overlapping character chunks.

    This coarse chunker keeps things simple while preserving context overlap.
    """
    if not text:
        return

    step = max(max_chars - overlap, 1)
    for start in range(0, len(text), step):
        yield text[start : start + max_chars]
        if start + max_chars >= len(text):
            break


def _is_abbreviation(prefix: str) -> bool:
    match = _LAST_WORD_RE.search(prefix)
    if match is None:
        return False
    return match.group(1).lower().rstrip(".") in _ABBREVIATIONS


def split_sentences(text: str) -> List[str]:
    """Split text on sentence-ending punctuation.

    A boundary is not taken after a known abbreviation ("Dr.", "e.g.") or
    when the next word starts with a lowercase letter. Decimals and URLs need
    no special handling since their dots are not followed by whitespace.
    """
    if not text or not text.strip():
        return []

    sentences: List[str] = []
    start = 0
    for match in _BOUNDARY_RE.finditer(text):
        if match.group(0).startswith(".") and _is_abbreviation(text[start : match.start()]):
            continue
        following = text[match.end() :].lstrip()
        if following and following[0].islower():
            continue
        sentence = text[start : match.end()].strip()
        if sentence:
            sentences.append(sentence)
        start = match.end()

    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def pack_sentences(
    sentences: Sequence[str], *, max_chars: int = 1200, overlap: int = 0
) -> List[str]:
    """Greedily join sentences into windows of at most ``max_chars``.

    The last ``overlap`` sentences of a window are repeated at the start of
    the next one when they fit. A sentence longer than ``max_chars`` becomes a
    window of its own.
    """
    windows: List[str] = []
    current: List[str] = []

    for sentence in sentences:
        if current and len(" ".join([*current, sentence])) > max_chars:
            windows.append(" ".join(current))
            current = list(current[-overlap:]) if overlap > 0 else []
            if current and len(" ".join([*current, sentence])) > max_chars:
                current = []
        current.append(sentence)

    if current:
        windows.append(" ".join(current))
    return windows


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return " ".join(text.split())
