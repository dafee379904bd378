"""Record store backends for videos and transcript segments."""

from .base import (
    FilterValues,
    RetrievalError,
    SegmentRecord,
    StorageBackend,
    TaxonomyStatistics,
    VideoRecord,
)
from .duckdb import DuckDBStorage

__all__ = [
    "FilterValues",
    "RetrievalError",
    "SegmentRecord",
    "StorageBackend",
    "TaxonomyStatistics",
    "VideoRecord",
    "DuckDBStorage",
]
