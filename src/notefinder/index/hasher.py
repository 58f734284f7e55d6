"""Content fingerprints used for change detection."""

from __future__ import annotations

import hashlib
import json
from typing import Iterable

from notefinder.models import Recording


class ContentHasher:
    """SHA-256 over a recording's searchable fields.

    Metadata (id, timestamp, duration, file size, path) is not part of the
    digest: two recordings with the same text hash the same. The fields are
    serialized as a JSON array, so moving text across a field boundary or
    splitting a tag changes the digest.
    """

    def compute_hash(self, recording: Recording) -> str:
        return self.compute_hash_from_fields(
            title=recording.title,
            summary=recording.summary,
            context=recording.context,
            tags=recording.tags,
            transcript=recording.transcript,
        )

    def compute_hash_from_fields(
        self,
        title: str,
        summary: str = "",
        context: str = "",
        tags: Iterable[str] = (),
        transcript: str = "",
    ) -> str:
        content = json.dumps(
            [title, summary, context, list(tags), transcript],
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return hashlib.sha256(content.encode("utf-8")).hexdigest()
