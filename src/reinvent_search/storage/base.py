"""
Storage interfaces and data models for the video/segment record store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal, Protocol, Sequence, TypeAlias

from ..models import UNKNOWN

if TYPE_CHECKING:
    from ..search.filters import Constraint


Level: TypeAlias = Literal["Introductory", "Intermediate", "Advanced", "Expert", "Unknown"]
SessionType: TypeAlias = Literal[
    "Breakout", "Chalk Talk", "Workshop", "Keynote", "Lightning Talk", "Unknown"
]
MetadataSource: TypeAlias = Literal["transcript", "video-metadata", "combined"]


class RetrievalError(RuntimeError):
    """Raised when the record store cannot serve a primary retrieval query."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        message = f"Store retrieval failed during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause


def _as_tuple(values: Sequence[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class VideoRecord:
    """A conference video with its enriched taxonomy metadata."""

    id: str
    title: str
    channel_id: str
    channel_title: str
    published_at: datetime
    duration: int
    youtube_url: str = ""
    description: str = ""
    thumbnail_url: str = ""
    level: Level = UNKNOWN
    services: tuple[str, ...] = ()
    topics: tuple[str, ...] = ()
    industry: tuple[str, ...] = ()
    session_type: SessionType = UNKNOWN
    speakers: tuple[str, ...] = ()
    metadata_source: MetadataSource = "video-metadata"
    metadata_confidence: float = 0.0
    extracted_keywords: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Taxonomy fields are never null; absence is an empty tuple or Unknown.
        for name in ("services", "topics", "industry", "speakers", "extracted_keywords"):
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))
        if not self.level:
            object.__setattr__(self, "level", UNKNOWN)
        if not self.session_type:
            object.__setattr__(self, "session_type", UNKNOWN)
        if self.published_at.tzinfo is None:
            object.__setattr__(
                self, "published_at", self.published_at.replace(tzinfo=timezone.utc)
            )


@dataclass(frozen=True)
class SegmentRecord:
    """A timestamped transcript span of a video, the atomic unit of matching."""

    id: str
    video_id: str
    start_time: float
    end_time: float
    text: str
    embedding: tuple[float, ...] = ()
    confidence: float | None = None
    speaker: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "embedding",
            tuple(float(value) for value in self.embedding) if self.embedding else (),
        )
        if self.end_time < self.start_time:
            raise ValueError(
                f"Segment {self.id!r} ends ({self.end_time}) before it starts ({self.start_time})."
            )


@dataclass(frozen=True)
class FilterValues:
    """Distinct facet values available for building filter pickers."""

    levels: list[str] = field(default_factory=list)
    services: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)
    session_types: list[str] = field(default_factory=list)
    channels: list[str] = field(default_factory=list)
    metadata_sources: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TaxonomyStatistics:
    """Video counts per facet value."""

    total_videos: int = 0
    level_counts: dict[str, int] = field(default_factory=dict)
    service_counts: dict[str, int] = field(default_factory=dict)
    topic_counts: dict[str, int] = field(default_factory=dict)
    industry_counts: dict[str, int] = field(default_factory=dict)
    session_type_counts: dict[str, int] = field(default_factory=dict)
    channel_counts: dict[str, int] = field(default_factory=dict)


class StorageBackend(Protocol):
    """Read contract consumed by the search engine, plus the ingestion write side."""

    def initialize(self) -> None:
        """Initialize required tables/indexes."""

    def upsert_video(self, video: VideoRecord) -> None:
        """Insert or update a video."""

    def upsert_segments(self, video_id: str, segments: list[SegmentRecord]) -> None:
        """Replace the segments of a video."""

    def refresh_text_index(self) -> bool:
        """Rebuild the full-text index. Return False when unavailable."""

    def get_segments_with_embeddings(self, limit: int = 1000) -> list[SegmentRecord]:
        """Return segments that carry a non-empty embedding."""

    def get_segments_matching_text(self, query: str, limit: int = 1000) -> list[SegmentRecord]:
        """Return segments whose text matches the query, best confidence first."""

    def get_video_by_id(self, video_id: str) -> VideoRecord | None:
        """Return a video by id, or None when absent."""

    def get_segments_by_filter(
        self,
        constraints: Sequence[Constraint],
        *,
        limit: int | None = None,
    ) -> list[SegmentRecord]:
        """Return segments of videos satisfying every constraint, most recent first."""

    def get_taxonomy_statistics(self) -> TaxonomyStatistics:
        """Return video counts grouped per facet value."""

    def get_available_filter_values(self) -> FilterValues:
        """Return distinct facet values, excluding the Unknown sentinel."""
