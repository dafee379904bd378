"""
Vector-based semantic matching over stored segment embeddings.

Scores candidates by cosine similarity against a query vector. Failures
degrade to an empty hit list so hybrid search can continue lexical-only.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from ..storage.base import SegmentRecord, StorageBackend

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, defined as 0.0 for mismatched lengths or zero norms."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if magnitude == 0.0 or not math.isfinite(magnitude):
        return 0.0
    similarity = float(np.dot(left, right)) / magnitude
    return similarity if math.isfinite(similarity) else 0.0


class SemanticMatcher:
    """Rank embedded segments by similarity to a query vector."""

    def __init__(self, storage: StorageBackend, *, candidate_limit: int = 1000) -> None:
        self.storage = storage
        self.candidate_limit = candidate_limit

    def search(self, query_vector: Sequence[float], *, limit: int = 50) -> list[SegmentRecord]:
        """Return the top segments by cosine similarity, best first."""
        if limit <= 0 or len(query_vector) == 0:
            return []
        try:
            candidates = self.storage.get_segments_with_embeddings(self.candidate_limit)
            scored: list[tuple[float, SegmentRecord]] = []
            for segment in candidates:
                if len(segment.embedding) != len(query_vector):
                    continue
                scored.append((cosine_similarity(query_vector, segment.embedding), segment))
        except Exception as exc:
            logger.warning("Semantic search failed, continuing lexical-only: %s", exc)
            return []

        scored.sort(key=lambda item: (-item[0], item[1].id))
        return [segment for _, segment in scored[:limit]]
