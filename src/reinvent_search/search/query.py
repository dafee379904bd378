"""
Hybrid search engine: dispatches between the searched and browsed paths.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

from ..embeddings import TextEmbedder, build_embedder
from ..index_config import SearchSettings
from ..models import SearchOptions
from ..storage.base import FilterValues, SegmentRecord, StorageBackend, TaxonomyStatistics
from .aggregation import SearchResult, group_by_video
from .filters import constraints_from_options, filter_results
from .fusion import fuse_and_group
from .lexical import LexicalMatcher
from .ranker import rank_results
from .semantic import SemanticMatcher

logger = logging.getLogger(__name__)


class VideoSearchEngine:
    """Stateless hybrid search over conference video segments.

    A non-blank query runs lexical and semantic retrieval in parallel, fuses
    the hits, aggregates them per video, filters in memory and ranks. A blank
    query browses: constraints are pushed down to the store and the segments
    are aggregated and ranked under the same pagination contract.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        embedder: TextEmbedder | None = None,
        settings: SearchSettings | None = None,
    ) -> None:
        self.storage = storage
        self.settings = settings or SearchSettings.from_env()
        self.embedder = embedder or build_embedder(self.settings)

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Return ranked video results for a query and facet constraints."""
        resolved = options or SearchOptions()
        if not query.strip():
            return self.browse(resolved)
        return self._hybrid_search(query.strip(), resolved)

    def browse(self, options: SearchOptions | None = None) -> list[SearchResult]:
        """Filter-only retrieval with constraints evaluated by the store."""
        resolved = options or SearchOptions()
        # Scores need every segment of a video; the limit applies after ranking.
        segments = self.storage.get_segments_by_filter(constraints_from_options(resolved))
        results = group_by_video(
            segments,
            self.storage.get_video_by_id,
            segment_display_limit=self.settings.segment_display_limit,
        )
        return rank_results(
            results, limit=resolved.effective_limit, epsilon=self.settings.tie_epsilon
        )

    def get_available_filters(self) -> FilterValues:
        """Distinct, sorted facet values excluding the Unknown sentinel."""
        return self.storage.get_available_filter_values()

    def get_filter_statistics(self) -> TaxonomyStatistics:
        """Video counts per facet value."""
        return self.storage.get_taxonomy_statistics()

    def _hybrid_search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        limit = options.effective_limit
        semantic_limit = max(limit or 0, self.settings.semantic_limit)
        query_vector = self._embed_query(query)

        semantic_hits, lexical_hits = self._retrieve_parallel(
            query=query,
            query_vector=query_vector,
            semantic_limit=semantic_limit,
        )
        logger.debug(
            "Query %r: %d semantic hits, %d lexical hits",
            query,
            len(semantic_hits),
            len(lexical_hits),
        )

        results = fuse_and_group(
            semantic_hits,
            lexical_hits,
            self.storage.get_video_by_id,
            boost=self.settings.hybrid_boost,
            segment_display_limit=self.settings.segment_display_limit,
        )
        filtered = filter_results(results, constraints_from_options(options))
        return rank_results(filtered, limit=limit, epsilon=self.settings.tie_epsilon)

    def _embed_query(self, query: str) -> list[float]:
        try:
            return self.embedder.embed(query)
        except Exception as exc:
            logger.warning("Query embedding failed, continuing lexical-only: %s", exc)
            return []

    def _retrieve_parallel(
        self,
        *,
        query: str,
        query_vector: Sequence[float],
        semantic_limit: int,
    ) -> tuple[list[SegmentRecord], list[SegmentRecord]]:
        with ThreadPoolExecutor(max_workers=2) as executor:
            semantic_future = executor.submit(
                self._semantic_query,
                query_vector=query_vector,
                limit=semantic_limit,
            )
            lexical_future = executor.submit(self._lexical_query, query=query)
            semantic_hits = semantic_future.result()
            lexical_hits = lexical_future.result()
        return semantic_hits, lexical_hits

    def _semantic_query(
        self,
        *,
        query_vector: Sequence[float],
        limit: int,
    ) -> list[SegmentRecord]:
        if not query_vector:
            return []
        try:
            scoped_storage, cleanup = self._acquire_query_storage()
        except Exception as exc:
            logger.warning("Semantic search store unavailable: %s", exc)
            return []
        try:
            matcher = SemanticMatcher(
                scoped_storage,
                candidate_limit=self.settings.semantic_candidate_limit,
            )
            return matcher.search(query_vector, limit=limit)
        finally:
            cleanup()

    def _lexical_query(self, *, query: str) -> list[SegmentRecord]:
        scoped_storage, cleanup = self._acquire_query_storage()
        try:
            return LexicalMatcher(scoped_storage).search(query, limit=self.settings.lexical_limit)
        finally:
            cleanup()

    def _acquire_query_storage(self) -> tuple[StorageBackend, Callable[[], None]]:
        # Connections are not shared across threads; stores that can open a
        # sibling connection get one per retrieval task.
        clone = getattr(self.storage, "clone", None)
        if callable(clone):
            scoped = clone()
            return scoped, scoped.close
        return self.storage, lambda: None
