"""Tests for the /api/search and /api/filters REST endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import reinvent_search.server as server_module
from reinvent_search.server import app
from reinvent_search.storage import RetrievalError


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def _ids(data: dict) -> list[str]:
    return [item["video"]["id"] for item in data["results"]]


def test_search_endpoint_returns_ranked_videos(client, seeded_db_path: str) -> None:
    response = client.post("/api/search", json={"query": "Lambda", "db_path": seeded_db_path})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == len(data["results"])
    assert {"v-serverless", "v-agents"} <= set(_ids(data))
    scores = [item["relevance_score"] for item in data["results"]]
    assert all(0.0 <= score <= 1.0 for score in scores)


def test_search_endpoint_browses_with_structured_options(client, seeded_db_path: str) -> None:
    response = client.post(
        "/api/search",
        json={"query": "", "options": {"industry": ["Healthcare"]}, "db_path": seeded_db_path},
    )

    assert response.status_code == 200
    assert _ids(response.json()) == ["v-healthcare"]


def test_search_endpoint_combines_filter_expression_and_limit(
    client, seeded_db_path: str
) -> None:
    response = client.post(
        "/api/search",
        json={
            "query": "",
            "filters": "level in (Advanced, Expert)",
            "limit": 1,
            "db_path": seeded_db_path,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert _ids(data) == ["v-serverless"]
    assert data["options"]["limit"] == 1
    assert data["options"]["level"] == ["Advanced", "Expert"]


def test_search_endpoint_top_level_limit_overrides_options(
    client, seeded_db_path: str
) -> None:
    overridden = client.post(
        "/api/search",
        json={"query": "", "options": {"limit": 3}, "limit": 1, "db_path": seeded_db_path},
    )
    kept = client.post(
        "/api/search",
        json={"query": "", "options": {"limit": 2}, "limit": None, "db_path": seeded_db_path},
    )

    assert overridden.status_code == 200
    assert overridden.json()["options"]["limit"] == 1
    assert _ids(overridden.json()) == ["v-serverless"]
    assert kept.json()["options"]["limit"] == 2
    assert kept.json()["count"] == 2


def test_search_endpoint_rejects_bad_filter_expression(client, seeded_db_path: str) -> None:
    response = client.post(
        "/api/search",
        json={"query": "lambda", "filters": "owner=finance", "db_path": seeded_db_path},
    )

    assert response.status_code == 400
    assert "syntax" in response.json()


def test_search_endpoint_rejects_unknown_option_fields(client, seeded_db_path: str) -> None:
    response = client.post(
        "/api/search",
        json={"query": "lambda", "options": {"speaker": ["Werner"]}, "db_path": seeded_db_path},
    )

    assert response.status_code == 422


def test_search_endpoint_reports_missing_index(client, tmp_path: Path) -> None:
    response = client.post(
        "/api/search",
        json={"query": "lambda", "db_path": str(tmp_path / "missing.duckdb")},
    )

    assert response.status_code == 404


def test_search_endpoint_maps_retrieval_errors(client, seeded_db_path: str, monkeypatch) -> None:
    def failing_search(storage, query, options):
        raise RetrievalError("keyword search", RuntimeError("store offline"))

    monkeypatch.setattr(server_module, "_run_search", failing_search)

    response = client.post("/api/search", json={"query": "lambda", "db_path": seeded_db_path})

    assert response.status_code == 503
    assert "keyword search" in response.json()["error"]


def test_filters_endpoint_returns_facet_values(client, seeded_db_path: str) -> None:
    response = client.get("/api/filters", params={"db_path": seeded_db_path})

    assert response.status_code == 200
    data = response.json()
    assert data["session_types"] == ["Breakout", "Chalk Talk", "Keynote", "Workshop"]
    assert "Unknown" not in data["levels"]


def test_filter_stats_endpoint_returns_counts(client, seeded_db_path: str) -> None:
    response = client.get("/api/filters/stats", params={"db_path": seeded_db_path})

    assert response.status_code == 200
    data = response.json()
    assert data["total_videos"] == 4
    assert data["industry_counts"] == {"Financial Services": 1, "Healthcare": 1}


def test_filter_syntax_endpoint(client) -> None:
    response = client.get("/api/filters/syntax")

    assert response.status_code == 200
    assert "duration" in response.json()["syntax"]
