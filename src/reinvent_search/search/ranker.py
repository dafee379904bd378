"""
Final ordering and pagination shared by the search and browse paths.
"""

from __future__ import annotations

from typing import Sequence

from .aggregation import SearchResult

TIE_EPSILON = 0.01


def rank_results(
    results: Sequence[SearchResult],
    *,
    limit: int | None = None,
    epsilon: float = TIE_EPSILON,
) -> list[SearchResult]:
    """Sort by relevance, break near-ties by recency, then apply the limit.

    Results are walked in descending score order and cut into runs whose
    scores stay within ``epsilon`` of the run's first (highest) score. Each
    run is ordered newest first, so adjacent results either decrease in score
    or sit within ``epsilon`` of each other with non-increasing publish dates.
    """
    by_score = sorted(
        results,
        key=lambda result: (
            -result.relevance_score,
            -result.video.published_at.timestamp(),
            result.video.id,
        ),
    )

    ordered: list[SearchResult] = []
    run: list[SearchResult] = []
    for result in by_score:
        if run and run[0].relevance_score - result.relevance_score > epsilon:
            ordered.extend(_newest_first(run))
            run = []
        run.append(result)
    ordered.extend(_newest_first(run))

    if limit is not None and limit > 0:
        return ordered[:limit]
    return ordered


def _newest_first(run: list[SearchResult]) -> list[SearchResult]:
    return sorted(
        run,
        key=lambda result: (-result.video.published_at.timestamp(), result.video.id),
    )
