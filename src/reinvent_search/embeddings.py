"""
Query embedders for vector-based semantic search.

``HashingEmbedder`` is a deterministic, dependency-light stand-in for a
trained model; ``GenAIEmbedder`` wraps the Google GenAI embedding API. Both
satisfy ``TextEmbedder`` and produce vectors comparable to stored segment
embeddings of the same dimensionality.
"""

from __future__ import annotations

import math
import os
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from google.genai import Client as GenAIClient

if TYPE_CHECKING:
    from .index_config import SearchSettings


_DEFAULT_DIM = 384
_DEFAULT_GENAI_MODEL = "gemini-embedding-001"


class TextEmbedder(Protocol):
    """Maps query text to a fixed-length vector."""

    dim: int

    def embed(self, query: str) -> list[float]:
        """Embed a single query text for retrieval."""


def stable_hash(text: str) -> int:
    """Stable, non-negative 32-bit string hash (independent of PYTHONHASHSEED)."""
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


class HashingEmbedder:
    """Deterministic sinusoidal hash embedding of whitespace-separated words."""

    def __init__(self, dim: int = _DEFAULT_DIM, *, scale: float = 0.1) -> None:
        if dim <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dim}.")
        self.dim = dim
        self.scale = scale

    def embed(self, query: str) -> list[float]:
        vector = np.zeros(self.dim, dtype=np.float64)
        offsets = np.arange(self.dim, dtype=np.float64)
        for index, word in enumerate(query.lower().split()):
            seed = stable_hash(word)
            vector += np.sin(seed + offsets + index) * self.scale

        norm = float(np.linalg.norm(vector))
        if norm == 0.0 or not math.isfinite(norm):
            return vector.tolist()
        return (vector / norm).tolist()


class GenAIEmbedder:
    """Generate query embeddings via Google GenAI."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("REINVENT_SEARCH_GENAI_MODEL", _DEFAULT_GENAI_MODEL)
        self.dim = dim or int(os.getenv("REINVENT_SEARCH_EMBEDDING_DIM", str(_DEFAULT_DIM)))

        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or os.getenv("GOOGLE_API_KEY")
            if resolved_key is None:
                raise ValueError(
                    "GOOGLE_API_KEY not found. "
                    "Provide api_key or set the environment variable."
                )
            self._client = GenAIClient(api_key=resolved_key)

    def embed(self, query: str) -> list[float]:
        if not query.strip():
            return [0.0] * self.dim
        result = self._client.models.embed_content(
            model=self.model,
            contents=[query],
            config={
                "task_type": "RETRIEVAL_QUERY",
                "output_dimensionality": self.dim,
            },
        )
        return [float(value) for value in result.embeddings[0].values]


def build_embedder(settings: SearchSettings) -> TextEmbedder:
    """Return the embedder selected by configuration."""
    if settings.embedder == "genai":
        return GenAIEmbedder(dim=settings.embedding_dim)
    if settings.embedder == "hashing":
        return HashingEmbedder(dim=settings.embedding_dim)
    raise ValueError(f"Unknown embedder {settings.embedder!r}; expected 'hashing' or 'genai'.")
