"""
reinvent_search - hybrid search and ranking over conference session videos.

Combines full-text and embedding similarity over transcript segments,
aggregates matches per video, filters by enriched taxonomy facets and ranks
the result with a recency tie-break. A filter-only browse path pushes the
same facet constraints down to the DuckDB record store.

Example usage:
    >>> from reinvent_search import DuckDBStorage, SearchOptions, VideoSearchEngine
    >>> engine = VideoSearchEngine(DuckDBStorage("videos.duckdb"))
    >>> results = engine.search("serverless", SearchOptions(level=["Advanced"], limit=5))
"""

from .embeddings import GenAIEmbedder, HashingEmbedder, TextEmbedder
from .index_config import SearchSettings, resolve_db_path
from .models import DateRange, DurationRange, SearchOptions
from .search import FilterParseError, SearchResult, VideoSearchEngine
from .storage import (
    DuckDBStorage,
    FilterValues,
    RetrievalError,
    SegmentRecord,
    TaxonomyStatistics,
    VideoRecord,
)

__all__ = [
    # Engine
    "VideoSearchEngine",
    "SearchResult",
    "FilterParseError",
    # Request models
    "SearchOptions",
    "DateRange",
    "DurationRange",
    # Storage
    "DuckDBStorage",
    "VideoRecord",
    "SegmentRecord",
    "FilterValues",
    "TaxonomyStatistics",
    "RetrievalError",
    # Embeddings and configuration
    "TextEmbedder",
    "HashingEmbedder",
    "GenAIEmbedder",
    "SearchSettings",
    "resolve_db_path",
]
