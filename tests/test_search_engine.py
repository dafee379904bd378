"""Tests for hybrid search, browse pushdown and facet metadata over DuckDB."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from reinvent_search.index_config import SearchSettings
from reinvent_search.models import DateRange, DurationRange, SearchOptions
from reinvent_search.search import (
    LexicalMatcher,
    SemanticMatcher,
    VideoSearchEngine,
    constraints_from_options,
    filter_results,
    group_by_video,
    rank_results,
)
from reinvent_search.storage import DuckDBStorage, RetrievalError


def _ids(results) -> list[str]:
    return [result.video.id for result in results]


class _FailingSemanticStorage:
    """Wraps a store and fails every embedding scan."""

    clone = None

    def __init__(self, inner: DuckDBStorage) -> None:
        self._inner = inner

    def get_segments_with_embeddings(self, limit: int = 1000):
        raise RuntimeError("vector scan exploded")

    def __getattr__(self, name: str):
        return getattr(self._inner, name)


class _FailingLexicalStorage:
    """Wraps a store and fails every text match."""

    clone = None

    def __init__(self, inner: DuckDBStorage) -> None:
        self._inner = inner

    def get_segments_matching_text(self, query: str, limit: int = 1000):
        raise RetrievalError("keyword search", RuntimeError("store offline"))

    def __getattr__(self, name: str):
        return getattr(self._inner, name)


class _ExplodingEmbedder:
    dim = 3

    def embed(self, query: str) -> list[float]:
        raise RuntimeError("model unavailable")


@pytest.fixture()
def engine(seeded_storage, fixed_embedder, settings) -> VideoSearchEngine:
    return VideoSearchEngine(
        seeded_storage,
        embedder=fixed_embedder([1.0, 0.0, 0.0]),
        settings=settings,
    )


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


def test_lexical_matcher_orders_by_confidence_then_start(seeded_storage) -> None:
    hits = LexicalMatcher(seeded_storage).search("lambda")

    assert [hit.id for hit in hits] == [
        "s-ghost-1",
        "s-serverless-1",
        "s-agents-1",
        "s-serverless-2",
    ]


def test_lexical_matcher_never_matches_blank_query(seeded_storage) -> None:
    assert LexicalMatcher(seeded_storage).search("   ") == []


def test_lexical_substring_match_escapes_like_wildcards(seeded_storage) -> None:
    assert LexicalMatcher(seeded_storage).search("%") == []
    assert LexicalMatcher(seeded_storage).search("_") == []


def test_semantic_matcher_ranks_by_cosine_similarity(seeded_storage) -> None:
    hits = SemanticMatcher(seeded_storage).search([1.0, 0.0, 0.0], limit=3)

    assert [hit.id for hit in hits] == ["s-ghost-1", "s-serverless-1", "s-serverless-2"]


def test_semantic_matcher_skips_mismatched_dimensions(seeded_storage) -> None:
    assert SemanticMatcher(seeded_storage).search([1.0, 0.0], limit=5) == []


def test_semantic_matcher_degrades_on_store_failure(seeded_storage) -> None:
    matcher = SemanticMatcher(_FailingSemanticStorage(seeded_storage))

    assert matcher.search([1.0, 0.0, 0.0], limit=5) == []


# ---------------------------------------------------------------------------
# Hybrid search
# ---------------------------------------------------------------------------


def test_search_fuses_semantic_and_lexical_hits(engine) -> None:
    results = engine.search("Lambda")

    assert _ids(results) == ["v-serverless", "v-agents"]
    top_segment = results[0].segments[0]
    assert top_segment.id == "s-serverless-1"
    assert top_segment.confidence == pytest.approx(1.0)
    assert results[0].relevance_score == pytest.approx(1.0)
    assert results[1].relevance_score == pytest.approx(0.95)


def test_search_results_only_contain_segments_of_their_video(engine) -> None:
    for result in engine.search("agents lambda bedrock"):
        assert result.segments
        assert all(segment.video_id == result.video.id for segment in result.segments)
        assert 0.0 <= result.relevance_score <= 1.0


def test_search_single_segment_video(tmp_path: Path, make_video, make_segment) -> None:
    storage = DuckDBStorage(str(tmp_path / "single.duckdb"), full_text=False)
    storage.upsert_video(make_video("only"))
    storage.upsert_segments(
        "only",
        [make_segment("seg", "only", text="Lambda functions are serverless", confidence=0.9)],
    )
    engine = VideoSearchEngine(storage, settings=SearchSettings())

    results = engine.search("lambda")

    assert _ids(results) == ["only"]
    assert 0.9 <= results[0].relevance_score <= 1.0
    assert [segment.id for segment in results[0].segments] == ["seg"]
    storage.close()


def test_search_without_matches_returns_empty_list(
    seeded_storage, fixed_embedder, settings
) -> None:
    # No stored embedding shares the query dimensionality.
    engine = VideoSearchEngine(
        seeded_storage, embedder=fixed_embedder([1.0, 0.0]), settings=settings
    )

    assert engine.search("xyz-nonexistent-term") == []


def test_level_filter_excludes_unknown_even_when_text_matches(engine) -> None:
    unfiltered = engine.search("keynote")
    filtered = engine.search("keynote", SearchOptions(level=["Advanced"]))

    assert "v-keynote" in _ids(unfiltered)
    assert "v-keynote" not in _ids(filtered)


def test_search_applies_facets_after_fusion(engine) -> None:
    results = engine.search("Lambda", SearchOptions(topics=["generative"]))

    assert _ids(results) == ["v-agents"]


def test_search_limit_is_applied_after_ranking(engine) -> None:
    full = engine.search("Lambda")
    limited = engine.search("Lambda", SearchOptions(limit=1))
    unlimited = engine.search("Lambda", SearchOptions(limit=0))

    assert _ids(limited) == _ids(full)[:1]
    assert _ids(unlimited) == _ids(full)


def test_semantic_failure_degrades_to_lexical_only(seeded_storage, fixed_embedder, settings) -> None:
    engine = VideoSearchEngine(
        _FailingSemanticStorage(seeded_storage),
        embedder=fixed_embedder([1.0, 0.0, 0.0]),
        settings=settings,
    )

    results = engine.search("Lambda")

    assert _ids(results) == ["v-serverless", "v-agents"]
    assert results[0].segments[0].confidence == pytest.approx(0.9)


def test_embedding_failure_degrades_to_lexical_only(seeded_storage, settings) -> None:
    engine = VideoSearchEngine(seeded_storage, embedder=_ExplodingEmbedder(), settings=settings)

    assert _ids(engine.search("Lambda")) == ["v-serverless", "v-agents"]


def test_lexical_failure_propagates(seeded_storage, fixed_embedder, settings) -> None:
    engine = VideoSearchEngine(
        _FailingLexicalStorage(seeded_storage),
        embedder=fixed_embedder([1.0, 0.0, 0.0]),
        settings=settings,
    )

    with pytest.raises(RetrievalError):
        engine.search("Lambda")


# ---------------------------------------------------------------------------
# Browse
# ---------------------------------------------------------------------------


def test_blank_query_browses_with_industry_filter(engine) -> None:
    results = engine.search("  ", SearchOptions(industry=["Healthcare"]))

    assert _ids(results) == ["v-healthcare"]
    assert {segment.id for segment in results[0].segments} == {
        "s-healthcare-1",
        "s-healthcare-2",
    }


def test_browse_without_filters_ranks_every_ingested_video(engine) -> None:
    results = engine.browse()

    assert _ids(results) == ["v-serverless", "v-healthcare", "v-agents", "v-keynote"]
    assert results[0].relevance_score == pytest.approx(1.0)
    assert results[1].relevance_score == pytest.approx(0.9)


def test_browse_excludes_unknown_level_and_session_type(engine) -> None:
    by_level = engine.browse(SearchOptions(level=["Unknown", "Advanced"]))
    by_session = engine.browse(SearchOptions(session_type=["Keynote", "Workshop"]))

    assert _ids(by_level) == ["v-serverless"]
    assert _ids(by_session) == ["v-agents", "v-keynote"]


def test_browse_limit_caps_videos(engine) -> None:
    results = engine.browse(SearchOptions(limit=1))

    assert _ids(results) == ["v-serverless"]


def test_browse_limit_keeps_older_higher_scoring_video(
    tmp_path: Path, make_video, make_segment
) -> None:
    storage = DuckDBStorage(str(tmp_path / "browse.duckdb"), full_text=False)
    storage.upsert_video(make_video("new", published_at=datetime(2024, 12, 5, tzinfo=timezone.utc)))
    storage.upsert_video(make_video("old", published_at=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    storage.upsert_segments(
        "new",
        [
            make_segment(f"new-{index}", "new", start_time=index * 30.0, confidence=0.1)
            for index in range(6)
        ],
    )
    storage.upsert_segments("old", [make_segment("old-0", "old", confidence=0.9)])
    engine = VideoSearchEngine(storage, settings=SearchSettings())

    try:
        limited = engine.browse(SearchOptions(limit=1))
        everything = engine.browse(SearchOptions())
    finally:
        storage.close()

    assert _ids(limited) == ["old"]
    assert _ids(everything) == ["old", "new"]
    assert everything[0].relevance_score == pytest.approx(1.0)
    assert everything[1].relevance_score == pytest.approx(0.3)
    assert len(everything[1].segments) == 6


@pytest.mark.parametrize(
    "options",
    [
        SearchOptions(level=["Advanced", "Expert"]),
        SearchOptions(session_type=["Chalk Talk"]),
        SearchOptions(metadata_source=["combined"]),
        SearchOptions(services=["lambda"]),
        SearchOptions(services=["Bedrock"], topics=["serverless"]),
        SearchOptions(topics=["ai"]),
        SearchOptions(industry=["financial"]),
        SearchOptions(channels=["keynotes"]),
        SearchOptions(duration=DurationRange(min=2000, max=4000)),
        SearchOptions(duration=DurationRange(min=4000, max=2000)),
        SearchOptions(
            date_range=DateRange(
                start=datetime(2024, 12, 2, tzinfo=timezone.utc),
                end=datetime(2024, 12, 31, tzinfo=timezone.utc),
            )
        ),
        SearchOptions(date_range=DateRange(end=datetime(2024, 1, 1, tzinfo=timezone.utc))),
    ],
)
def test_browse_pushdown_matches_in_memory_filtering(seeded_storage, engine, options) -> None:
    pushed_down = engine.browse(options)

    everything = group_by_video(
        seeded_storage.get_segments_by_filter([]),
        seeded_storage.get_video_by_id,
    )
    in_memory = rank_results(filter_results(everything, constraints_from_options(options)))

    assert _ids(pushed_down) == _ids(in_memory)
    assert pushed_down


def test_browse_inverted_date_range_is_swapped(engine) -> None:
    options = SearchOptions(
        date_range=DateRange(
            start=datetime(2024, 12, 31, tzinfo=timezone.utc),
            end=datetime(2024, 12, 2, tzinfo=timezone.utc),
        )
    )

    assert _ids(engine.browse(options)) == ["v-serverless", "v-healthcare"]


# ---------------------------------------------------------------------------
# Facet metadata
# ---------------------------------------------------------------------------


def test_available_filters_are_sorted_and_exclude_unknown(engine) -> None:
    values = engine.get_available_filters()

    assert values.levels == ["Advanced", "Expert", "Intermediate"]
    assert values.session_types == ["Breakout", "Chalk Talk", "Keynote", "Workshop"]
    assert values.services == [
        "AWS Lake Formation",
        "AWS Lambda",
        "Amazon API Gateway",
        "Amazon Bedrock",
        "Amazon S3",
    ]
    assert values.industries == ["Financial Services", "Healthcare"]
    assert values.channels == ["AWS Developers", "AWS Events", "AWS Keynotes"]
    assert values.metadata_sources == ["combined", "transcript", "video-metadata"]


def test_filter_statistics_count_videos_per_value(engine) -> None:
    statistics = engine.get_filter_statistics()

    assert statistics.total_videos == 4
    assert statistics.service_counts["AWS Lambda"] == 2
    assert statistics.service_counts["Amazon Bedrock"] == 2
    assert statistics.topic_counts == {"Analytics": 1, "Generative AI": 2, "Serverless": 2}
    assert "Unknown" not in statistics.level_counts
    assert statistics.session_type_counts["Keynote"] == 1
    assert statistics.channel_counts == {"AWS Developers": 1, "AWS Events": 2, "AWS Keynotes": 1}


# ---------------------------------------------------------------------------
# Storage round trips
# ---------------------------------------------------------------------------


def test_video_round_trip_keeps_utc_timestamp(seeded_storage) -> None:
    video = seeded_storage.get_video_by_id("v-healthcare")

    assert video is not None
    assert video.published_at == datetime(2024, 12, 2, 15, 30, tzinfo=timezone.utc)
    assert video.industry == ("Healthcare",)
    assert seeded_storage.get_video_by_id("v-missing") is None


def test_upsert_segments_replaces_previous_segments(seeded_storage, make_segment) -> None:
    seeded_storage.upsert_segments(
        "v-keynote",
        [make_segment("s-keynote-new", "v-keynote", text="Fresh keynote recap", confidence=0.4)],
    )

    hits = LexicalMatcher(seeded_storage).search("keynote")

    assert [hit.id for hit in hits] == ["s-keynote-new"]


def test_full_text_index_search_when_available(seeded_storage) -> None:
    storage = DuckDBStorage(seeded_storage.db_path, initialize=False)
    try:
        if not storage.refresh_text_index():
            pytest.skip("DuckDB fts extension is not available")
        hits = LexicalMatcher(storage).search("governs")
        assert [hit.id for hit in hits] == ["s-healthcare-2"]
    finally:
        storage.close()


def test_segments_written_after_index_build_stay_searchable(
    seeded_storage, make_segment
) -> None:
    storage = DuckDBStorage(seeded_storage.db_path, initialize=False)
    try:
        if not storage.refresh_text_index():
            pytest.skip("DuckDB fts extension is not available")
        storage.upsert_segments(
            "v-keynote",
            [make_segment("s-keynote-gov", "v-keynote", text="Policy governs releases", confidence=0.9)],
        )

        stale = LexicalMatcher(storage).search("governs")
        assert storage.refresh_text_index()
        rebuilt = LexicalMatcher(storage).search("governs")
    finally:
        storage.close()

    assert [hit.id for hit in stale] == ["s-keynote-gov", "s-healthcare-2"]
    assert [hit.id for hit in rebuilt] == ["s-keynote-gov", "s-healthcare-2"]


def test_taxonomy_udf_is_registered_on_connection(seeded_storage) -> None:
    row = seeded_storage._conn.execute(
        "SELECT taxonomy_any(['AWS Lambda'], ['lambda']), taxonomy_any(['Amazon S3'], ['lambda'])"
    ).fetchone()

    assert row == (True, False)
