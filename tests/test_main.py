"""
Unit tests for the branch-sync operations API
Run with: pytest tests/
"""

import os
import sys
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import main
from main import app
from settings import Settings


def backend_handler(request: httpx.Request) -> httpx.Response:
    """Fake branch backend: one record per branch, paged data of 3 records."""
    branch_ids = [int(b) for b in request.url.params["branchIds"].split(",")]
    if request.url.path.endswith("/data/paged"):
        page = int(request.url.params["page"])
        return httpx.Response(200, json={"success": True, "data": [{"page": page, "n": i} for i in range(3)]})
    kind = request.url.path.split("/")[-2]
    return httpx.Response(200, json={
        "success": True,
        "data": [{"branch_id": b, "type": kind} for b in branch_ids],
    })


# ── Fixtures ─────────────────────────────────────────────────────────────────
@pytest.fixture
def client():
    """Test client with the lifespan running and the backend mocked out."""
    main.branch_state.set_accessible([])
    main.branch_state.set_active([])
    # TestClient automatically triggers startup/shutdown events
    with TestClient(app) as test_client:
        main.engine.client.http = httpx.AsyncClient(transport=httpx.MockTransport(backend_handler))
        yield test_client


# ── Health ───────────────────────────────────────────────────────────────────
def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "branch-sync"
    assert data["optimization_enabled"] is True
    assert data["suspended"] is False
    assert "X-Request-ID" in response.headers


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"


# ── Data loads ───────────────────────────────────────────────────────────────
def test_load_data_miss_then_hit(client):
    first = client.get("/api/data/sales", params={"branch_ids": "2,1"})
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["metadata"]["total_records"] == 2
    assert first.headers["X-Cache"] == "MISS"

    second = client.get("/api/data/sales", params={"branch_ids": "1,2"})
    assert second.json()["metadata"]["from_cache"] is True
    assert second.headers["X-Cache"] == "HIT"


def test_load_data_invalid_branch_ids(client):
    response = client.get("/api/data/sales", params={"branch_ids": "one,two"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_load_data_unknown_type(client):
    response = client.get("/api/data/payroll", params={"branch_ids": "1"})
    assert response.status_code == 422


def test_paged_load(client):
    response = client.get("/api/data/paged", params={"branch_ids": "1", "page": 0, "page_size": 3})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["has_more"] is True
    assert len(data["data"]) == 3

    cached = client.get("/api/data/paged", params={"branch_ids": "1", "page": 1, "page_size": 3})
    assert cached.json()["from_cache"] is True


# ── Sync ─────────────────────────────────────────────────────────────────────
def test_sync_branches(client):
    response = client.post("/api/sync", json={
        "branch_ids": [1, 2],
        "data_types": ["sales", "notifications"],
        "priority": "high",
    })
    assert response.status_code == 200
    assert response.json()["success"] is True

    status = client.get("/api/sync/status").json()
    assert status["progress"] == {"overall": 100, "completed": 2, "total": 2}
    assert {s["status"] for s in status["statuses"]} == {"synced"}


def test_sync_rejects_too_many_branches(client):
    response = client.post("/api/sync", json={"branch_ids": list(range(51))})
    assert response.status_code == 422


def test_sync_needs_for_unknown_branch(client):
    response = client.get("/api/sync/needs", params={"branch_ids": "7"})
    assert response.status_code == 200
    need = response.json()[0]
    assert need["priority"] == "high"
    assert need["data_types"] == ["sales", "inventory", "analytics", "notifications"]


def test_smart_sync_requires_branches(client):
    response = client.post("/api/sync/smart", json={})
    assert response.status_code == 400
    assert response.json()["code"] == "ERR_400"


def test_smart_sync_with_explicit_branches(client):
    with patch.object(main.engine, "smart_sync", AsyncMock(return_value=[])) as mock_sync:
        response = client.post("/api/sync/smart", json={"branch_ids": [4, 5]})

    assert response.status_code == 200
    assert response.json() == []
    mock_sync.assert_awaited_once_with([4, 5])


def test_refresh_without_active_branches(client):
    response = client.post("/api/sync/refresh")
    assert response.status_code == 400


# ── Branches ─────────────────────────────────────────────────────────────────
def test_set_branches_and_predictions(client):
    response = client.put("/api/branches", json={"branches": [
        {"branch_id": 1, "branch_name": "HQ"},
        {"branch_id": 2, "branch_name": "North", "parent_branch_id": 1},
    ]})
    assert response.json() == {"branches": 2}

    response = client.put("/api/branches/active", json={"branch_ids": [1, 1]})
    data = response.json()
    assert data["active_branch_ids"] == [1]
    assert data["predicted_next"] == [2]


def test_branch_health_unknown_branch(client):
    response = client.get("/api/branches/42/health")
    assert response.status_code == 404
    assert response.json()["error"] == "request_failed"


def test_branch_health_after_sync(client):
    client.post("/api/sync", json={"branch_ids": [3], "data_types": ["sales"]})
    data = client.get("/api/branches/3/health").json()
    assert data["branch_id"] == 3
    assert data["status"] in ("excellent", "good", "fair", "poor", "critical")


# ── Cache management ─────────────────────────────────────────────────────────
def test_cache_stats_and_clear(client):
    client.get("/api/data/inventory", params={"branch_ids": "1"})
    stats = client.get("/api/cache/stats").json()
    assert stats["total_entries"] == 1

    response = client.delete("/api/cache")
    assert response.json()["cleared"] == 1
    assert client.get("/api/cache/stats").json()["total_entries"] == 0


def test_invalidate_branch_endpoint(client):
    client.get("/api/data/sales", params={"branch_ids": "5"})
    response = client.delete("/api/cache/branches/5")
    assert response.json() == {"cleared": 1, "branch_id": 5}


def test_cache_clear_requires_admin_key_when_configured(client, monkeypatch):
    monkeypatch.setattr(main.settings, "admin_api_key", "secret")

    assert client.delete("/api/cache").status_code == 403
    assert client.delete("/api/cache", headers={"X-API-Key": "secret"}).status_code == 200


# ── Performance ──────────────────────────────────────────────────────────────
def test_performance_report(client):
    client.get("/api/data/sales", params={"branch_ids": "1"})
    client.get("/api/data/sales", params={"branch_ids": "1"})

    data = client.get("/api/performance").json()
    assert data["performance_insights"]["total_operations"] == 2
    assert data["performance_insights"]["cache_hit_ratio_percent"] == 50


def test_optimization_toggle(client):
    assert client.post("/api/optimization/disable").json() == {"optimization_enabled": False}
    assert client.get("/api/report").json()["optimization_enabled"] is False
    assert client.post("/api/optimization/enable").json() == {"optimization_enabled": True}
    assert client.post("/api/optimization/sideways").status_code == 404


def test_performance_mode_queues_active_branches(client):
    assert client.post("/api/optimization/performance-mode").json() == {"queued": 0}

    client.put("/api/branches/active", json={"branch_ids": [1, 2]})
    response = client.post("/api/optimization/performance-mode")
    assert response.status_code == 200
    assert response.json() == {"queued": 2}


# ── Settings Configuration ───────────────────────────────────────────────────
def test_settings_default_values():
    test_settings = Settings()
    assert test_settings.port == 8100
    assert test_settings.cache_ttl == 300
    assert test_settings.debounce_seconds == 0.3
    assert test_settings.max_retries == 3


def test_settings_cors_origins_parsing():
    test_settings = Settings(allowed_origins="http://a.com,http://b.com")
    assert len(test_settings.cors_origins) == 2
    assert "http://a.com" in test_settings.cors_origins


def test_settings_is_development():
    assert Settings(env="development").is_development is True
    assert Settings(env="production").is_development is False
