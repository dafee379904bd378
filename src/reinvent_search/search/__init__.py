"""Hybrid search, facet filtering and ranking over conference video segments."""

from .aggregation import SearchResult, group_by_video, relevance_score
from .filters import (
    ChannelConstraint,
    ChoiceConstraint,
    Constraint,
    DateRangeConstraint,
    DurationConstraint,
    FilterParseError,
    TaxonomyConstraint,
    apply_filters,
    constraints_from_options,
    filter_results,
    parse_filter_expression,
    supported_filter_syntax,
    taxonomy_matches,
)
from .fusion import fuse, fuse_and_group
from .lexical import LexicalMatcher
from .query import VideoSearchEngine
from .ranker import rank_results
from .semantic import SemanticMatcher, cosine_similarity

__all__ = [
    "SearchResult",
    "group_by_video",
    "relevance_score",
    "ChannelConstraint",
    "ChoiceConstraint",
    "Constraint",
    "DateRangeConstraint",
    "DurationConstraint",
    "FilterParseError",
    "TaxonomyConstraint",
    "apply_filters",
    "constraints_from_options",
    "filter_results",
    "parse_filter_expression",
    "supported_filter_syntax",
    "taxonomy_matches",
    "fuse",
    "fuse_and_group",
    "LexicalMatcher",
    "VideoSearchEngine",
    "rank_results",
    "SemanticMatcher",
    "cosine_similarity",
]
