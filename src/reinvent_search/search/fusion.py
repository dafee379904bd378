"""
Hybrid fusion of semantic and lexical segment hits.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from ..storage.base import SegmentRecord
from .aggregation import SearchResult, VideoLookup, group_by_video

HYBRID_BOOST = 0.2


def fuse(
    semantic_hits: Iterable[SegmentRecord],
    lexical_hits: Iterable[SegmentRecord],
    *,
    boost: float = HYBRID_BOOST,
) -> dict[str, SegmentRecord]:
    """Merge hit lists by segment id, boosting segments found by both sources."""
    merged: dict[str, SegmentRecord] = {}
    sources: dict[str, set[str]] = {}

    for source, hits in (("semantic", semantic_hits), ("lexical", lexical_hits)):
        for segment in hits:
            merged.setdefault(segment.id, segment)
            sources.setdefault(segment.id, set()).add(source)

    for segment_id, found_by in sources.items():
        if len(found_by) > 1:
            segment = merged[segment_id]
            base = segment.confidence if segment.confidence is not None else 0.0
            merged[segment_id] = replace(segment, confidence=min(base + boost, 1.0))
    return merged


def fuse_and_group(
    semantic_hits: Iterable[SegmentRecord],
    lexical_hits: Iterable[SegmentRecord],
    video_lookup: VideoLookup,
    *,
    boost: float = HYBRID_BOOST,
    segment_display_limit: int | None = 10,
) -> list[SearchResult]:
    """Fuse both hit lists, then aggregate so the boost feeds the video score."""
    fused = fuse(semantic_hits, lexical_hits, boost=boost)
    return group_by_video(
        fused.values(),
        video_lookup,
        segment_display_limit=segment_display_limit,
    )
