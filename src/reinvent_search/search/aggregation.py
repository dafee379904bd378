"""
Segment-to-video aggregation and per-video relevance scoring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..storage.base import SegmentRecord, VideoRecord

logger = logging.getLogger(__name__)

VideoLookup = Callable[[str], VideoRecord | None]

MAX_COUNT_BONUS = 0.2


@dataclass(frozen=True)
class SearchResult:
    """A video with its matched segments and aggregate relevance."""

    video: VideoRecord
    segments: tuple[SegmentRecord, ...]
    relevance_score: float

    def to_dict(self) -> dict[str, Any]:
        video = self.video
        return {
            "video": {
                "id": video.id,
                "title": video.title,
                "description": video.description,
                "channel_id": video.channel_id,
                "channel_title": video.channel_title,
                "published_at": video.published_at.isoformat(),
                "duration": video.duration,
                "thumbnail_url": video.thumbnail_url,
                "youtube_url": video.youtube_url,
                "level": video.level,
                "services": list(video.services),
                "topics": list(video.topics),
                "industry": list(video.industry),
                "session_type": video.session_type,
                "speakers": list(video.speakers),
                "metadata_source": video.metadata_source,
                "metadata_confidence": video.metadata_confidence,
                "extracted_keywords": list(video.extracted_keywords),
            },
            "segments": [
                {
                    "id": segment.id,
                    "video_id": segment.video_id,
                    "start_time": segment.start_time,
                    "end_time": segment.end_time,
                    "text": segment.text,
                    "confidence": segment.confidence,
                    "speaker": segment.speaker,
                }
                for segment in self.segments
            ],
            "relevance_score": self.relevance_score,
        }


def _confidence(segment: SegmentRecord) -> float:
    return segment.confidence if segment.confidence is not None else 0.0


def relevance_score(segments: Iterable[SegmentRecord]) -> float:
    """Mean confidence plus a bonus of 0.1 per segment (capped at 0.2), capped at 1.0."""
    confidences = [_confidence(segment) for segment in segments]
    if not confidences:
        return 0.0
    mean_confidence = sum(confidences) / len(confidences)
    count_bonus = min(len(confidences) / 10, MAX_COUNT_BONUS)
    return max(0.0, min(mean_confidence + count_bonus, 1.0))


def group_by_video(
    segments: Iterable[SegmentRecord],
    video_lookup: VideoLookup,
    *,
    segment_display_limit: int | None = 10,
) -> list[SearchResult]:
    """Group segments under their video, score each video, best first.

    Segments whose video cannot be resolved are dropped.
    """
    grouped: dict[str, list[SegmentRecord]] = {}
    videos: dict[str, VideoRecord] = {}
    missing: set[str] = set()

    for segment in segments:
        video_id = segment.video_id
        if video_id in missing:
            continue
        if video_id not in videos:
            video = video_lookup(video_id)
            if video is None:
                logger.debug("Dropping segment %s of unknown video %s", segment.id, video_id)
                missing.add(video_id)
                continue
            videos[video_id] = video
            grouped[video_id] = []
        grouped[video_id].append(segment)

    results: list[SearchResult] = []
    for video_id, video_segments in grouped.items():
        ordered = sorted(video_segments, key=lambda segment: -_confidence(segment))
        shown = ordered
        if segment_display_limit is not None and segment_display_limit > 0:
            shown = ordered[:segment_display_limit]
        results.append(
            SearchResult(
                video=videos[video_id],
                segments=tuple(shown),
                relevance_score=relevance_score(ordered),
            )
        )

    results.sort(key=lambda result: -result.relevance_score)
    return results
