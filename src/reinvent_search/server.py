"""
FastAPI server for conference video search.

Exposes hybrid search and browse, the available filter values and the
per-facet statistics over a read-only DuckDB record store.
"""

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .embeddings import build_embedder
from .index_config import SearchSettings, resolve_db_path
from .models import SearchOptions
from .search import FilterParseError, VideoSearchEngine, parse_filter_expression
from .search.filters import supported_filter_syntax
from .storage import DuckDBStorage, RetrievalError

logger = logging.getLogger(__name__)

app = FastAPI(title="reinvent-search", description="Hybrid search over conference videos")


class SearchRequest(BaseModel):
    """Request model for search and browse queries."""

    query: str = ""
    filters: str | None = Field(default=None, description="Filter expression")
    options: SearchOptions | None = None
    limit: int | None = None
    db_path: str | None = None


def _open_storage(db_path: str | None) -> DuckDBStorage | None:
    resolved_db_path = resolve_db_path(db_path)
    if not Path(resolved_db_path).exists():
        return None
    return DuckDBStorage(resolved_db_path, read_only=True, initialize=False)


def _missing_index() -> JSONResponse:
    return JSONResponse({"error": "No video index found."}, status_code=404)


def _run_search(storage: DuckDBStorage, query: str, options: SearchOptions) -> list[dict[str, Any]]:
    settings = SearchSettings.from_env()
    engine = VideoSearchEngine(storage, embedder=build_embedder(settings), settings=settings)
    return [result.to_dict() for result in engine.search(query, options)]


@app.post("/api/search")
async def search_videos(request: SearchRequest):
    """Search videos by text and facets; an empty query browses."""
    try:
        base = (request.options or SearchOptions()).merged(limit=request.limit)
        options = parse_filter_expression(request.filters, base=base)
    except FilterParseError as exc:
        return JSONResponse(
            {"error": str(exc), "syntax": supported_filter_syntax()}, status_code=400
        )

    try:
        storage = _open_storage(request.db_path)
        if storage is None:
            return _missing_index()
        try:
            results = await asyncio.to_thread(_run_search, storage, request.query, options)
        finally:
            storage.close()
    except RetrievalError as exc:
        logger.warning("Search failed: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=503)
    except Exception as exc:
        logger.exception("Unexpected search failure")
        return JSONResponse({"error": str(exc)}, status_code=500)

    return {
        "query": request.query,
        "options": options.model_dump(mode="json"),
        "count": len(results),
        "results": results,
    }


@app.get("/api/filters")
async def available_filters(db_path: str | None = None):
    """Distinct facet values for building filter pickers."""
    try:
        storage = _open_storage(db_path)
        if storage is None:
            return _missing_index()
        try:
            values = storage.get_available_filter_values()
        finally:
            storage.close()
    except RetrievalError as exc:
        return JSONResponse({"error": str(exc)}, status_code=503)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)
    return asdict(values)


@app.get("/api/filters/stats")
async def filter_statistics(db_path: str | None = None):
    """Video counts per facet value."""
    try:
        storage = _open_storage(db_path)
        if storage is None:
            return _missing_index()
        try:
            statistics = storage.get_taxonomy_statistics()
        finally:
            storage.close()
    except RetrievalError as exc:
        return JSONResponse({"error": str(exc)}, status_code=503)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)
    return asdict(statistics)


@app.get("/api/filters/syntax")
async def filter_syntax():
    """Help text for the filter expression language."""
    return {"syntax": supported_filter_syntax()}


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
