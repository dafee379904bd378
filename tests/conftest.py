"""Shared fixtures: a small seeded video store and deterministic embedders."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from reinvent_search.index_config import SearchSettings
from reinvent_search.storage import DuckDBStorage, SegmentRecord, VideoRecord


def _video(video_id: str, **overrides: Any) -> VideoRecord:
    values: dict[str, Any] = {
        "id": video_id,
        "title": f"Video {video_id}",
        "channel_id": "UCaws",
        "channel_title": "AWS Events",
        "published_at": datetime(2024, 12, 1, tzinfo=timezone.utc),
        "duration": 3600,
        "youtube_url": f"https://www.youtube.com/watch?v={video_id}",
    }
    values.update(overrides)
    return VideoRecord(**values)


def _segment(segment_id: str, video_id: str, **overrides: Any) -> SegmentRecord:
    values: dict[str, Any] = {
        "id": segment_id,
        "video_id": video_id,
        "start_time": 0.0,
        "end_time": 30.0,
        "text": "",
    }
    values.update(overrides)
    return SegmentRecord(**values)


SEED_VIDEOS = [
    _video(
        "v-serverless",
        title="Serverless patterns with AWS Lambda",
        published_at=datetime(2024, 12, 3, 17, 0, tzinfo=timezone.utc),
        duration=3600,
        level="Advanced",
        services=["AWS Lambda", "Amazon API Gateway"],
        topics=["Serverless"],
        session_type="Breakout",
        metadata_source="combined",
        metadata_confidence=0.9,
    ),
    _video(
        "v-healthcare",
        title="Healthcare data lakes on AWS",
        published_at=datetime(2024, 12, 2, 15, 30, tzinfo=timezone.utc),
        duration=2700,
        level="Intermediate",
        services=["Amazon S3", "AWS Lake Formation"],
        topics=["Analytics"],
        industry=["Healthcare"],
        session_type="Chalk Talk",
        metadata_source="transcript",
        metadata_confidence=0.7,
    ),
    _video(
        "v-keynote",
        title="Keynote with the CEO",
        channel_id="UCkeynotes",
        channel_title="AWS Keynotes",
        published_at=datetime(2024, 12, 1, 9, 0, tzinfo=timezone.utc),
        duration=7200,
        services=["Amazon Bedrock"],
        topics=["Generative AI"],
        session_type="Keynote",
    ),
    _video(
        "v-agents",
        title="Building agents with Bedrock",
        channel_id="UCdevelopers",
        channel_title="AWS Developers",
        published_at=datetime(2023, 11, 28, 12, 0, tzinfo=timezone.utc),
        duration=1800,
        level="Expert",
        services=["Amazon Bedrock", "AWS Lambda"],
        topics=["Generative AI", "Serverless"],
        industry=["Financial Services"],
        session_type="Workshop",
        metadata_source="combined",
        metadata_confidence=0.8,
    ),
]

SEED_SEGMENTS = {
    "v-serverless": [
        _segment(
            "s-serverless-1",
            "v-serverless",
            text="Lambda functions scale to zero between invocations",
            confidence=0.9,
            embedding=[1.0, 0.0, 0.0],
        ),
        _segment(
            "s-serverless-2",
            "v-serverless",
            start_time=60.0,
            end_time=95.0,
            text="API Gateway routes requests to Lambda",
            confidence=0.7,
            embedding=[0.7, 0.7, 0.0],
        ),
    ],
    "v-healthcare": [
        _segment(
            "s-healthcare-1",
            "v-healthcare",
            text="Store patient records in Amazon S3 data lakes",
            confidence=0.8,
            embedding=[0.0, 1.0, 0.0],
        ),
        _segment(
            "s-healthcare-2",
            "v-healthcare",
            start_time=45.0,
            end_time=80.0,
            text="Lake Formation governs access to the lake",
            confidence=0.6,
        ),
    ],
    "v-keynote": [
        _segment(
            "s-keynote-1",
            "v-keynote",
            text="Welcome to the keynote, today we launch new Bedrock models",
            confidence=0.5,
            embedding=[0.0, 0.0, 1.0],
        ),
    ],
    "v-agents": [
        _segment(
            "s-agents-1",
            "v-agents",
            text="Agents call Lambda tools through Bedrock",
            confidence=0.85,
            embedding=[0.6, 0.0, 0.8],
        ),
        _segment(
            "s-agents-2",
            "v-agents",
            start_time=120.0,
            end_time=150.0,
            text="Guardrails keep agents safe",
        ),
    ],
    # Segment whose video was never ingested.
    "v-ghost": [
        _segment(
            "s-ghost-1",
            "v-ghost",
            text="Lambda orphan segment",
            confidence=0.99,
            embedding=[1.0, 0.0, 0.0],
        ),
    ],
}


class FixedEmbedder:
    """Returns the same query vector for every query."""

    def __init__(self, vector: list[float]) -> None:
        self.vector = vector
        self.dim = len(vector)
        self.calls: list[str] = []

    def embed(self, query: str) -> list[float]:
        self.calls.append(query)
        return list(self.vector)


def seed(storage: DuckDBStorage) -> None:
    for video in SEED_VIDEOS:
        storage.upsert_video(video)
    for video_id, segments in SEED_SEGMENTS.items():
        storage.upsert_segments(video_id, segments)


@pytest.fixture()
def make_video() -> Callable[..., VideoRecord]:
    return _video


@pytest.fixture()
def make_segment() -> Callable[..., SegmentRecord]:
    return _segment


@pytest.fixture()
def fixed_embedder() -> Callable[[list[float]], FixedEmbedder]:
    return FixedEmbedder


@pytest.fixture()
def settings() -> SearchSettings:
    return SearchSettings(semantic_limit=2, embedding_dim=3)


@pytest.fixture()
def seeded_storage(tmp_path: Path):
    """A writable DuckDB store holding the seed videos and segments."""
    storage = DuckDBStorage(str(tmp_path / "videos.duckdb"), full_text=False)
    seed(storage)
    yield storage
    storage.close()


@pytest.fixture()
def seeded_db_path(tmp_path: Path, monkeypatch) -> str:
    """Path to a seeded store whose writer connection is already closed."""
    db_path = str(tmp_path / "videos.duckdb")
    storage = DuckDBStorage(db_path, full_text=False)
    seed(storage)
    storage.close()
    monkeypatch.setenv("REINVENT_SEARCH_SEMANTIC_LIMIT", "1")
    monkeypatch.setenv("REINVENT_SEARCH_EMBEDDING_DIM", "3")
    return db_path
