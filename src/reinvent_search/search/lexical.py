"""
Keyword matching over segment text.
"""

from __future__ import annotations

from ..storage.base import SegmentRecord, StorageBackend


class LexicalMatcher:
    """Full-text (or substring) segment matching delegated to the record store."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    def search(self, query: str, *, limit: int = 1000) -> list[SegmentRecord]:
        """Return matching segments, highest confidence first, then earliest start.

        Blank queries never match; browsing is a separate path. Store failures
        propagate as ``RetrievalError``.
        """
        if not query.strip():
            return []
        segments = self.storage.get_segments_matching_text(query, max(limit, 1))
        return sorted(
            segments,
            key=lambda segment: (
                -(segment.confidence if segment.confidence is not None else -1.0),
                segment.start_time,
                segment.id,
            ),
        )
