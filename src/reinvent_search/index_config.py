"""
Configuration helpers for the record store location and ranking tunables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path


DEFAULT_DB_PATH = "~/.reinvent_search/videos.duckdb"
ENV_DB_PATH = "REINVENT_SEARCH_DB_PATH"
ENV_PREFIX = "REINVENT_SEARCH_"


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) REINVENT_SEARCH_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


@dataclass(frozen=True)
class SearchSettings:
    """Tunables for retrieval volume, fusion and ranking."""

    lexical_limit: int = 1000
    semantic_candidate_limit: int = 1000
    semantic_limit: int = 50
    hybrid_boost: float = 0.2
    segment_display_limit: int = 10
    tie_epsilon: float = 0.01
    embedding_dim: int = 384
    embedder: str = "hashing"

    @classmethod
    def from_env(cls) -> SearchSettings:
        """Build settings, overriding defaults with REINVENT_SEARCH_<FIELD> variables."""
        overrides: dict[str, object] = {}
        for item in fields(cls):
            raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
            if raw is None or not raw.strip():
                continue
            default = item.default
            try:
                if isinstance(default, int):
                    overrides[item.name] = int(raw)
                elif isinstance(default, float):
                    overrides[item.name] = float(raw)
                else:
                    overrides[item.name] = raw.strip()
            except ValueError:
                raise ValueError(
                    f"Invalid value for {ENV_PREFIX}{item.name.upper()}: {raw!r}"
                ) from None
        return cls(**overrides)  # type: ignore[arg-type]
