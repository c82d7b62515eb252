"""
Unit tests for the backend API client
Run with: pytest tests/
"""

import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from client import BranchApiClient
from models import DataType

BASE_URL = "http://backend.test/api"


def make_client(handler, max_retries=3):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BranchApiClient(http, base_url=BASE_URL, timeout=5, max_retries=max_retries, retry_backoff=0)


# ── Success path ─────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_fetch_success_sends_expected_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": [{"id": 1}, {"id": 2}]})

    client = make_client(handler)
    result = await client.fetch(DataType.SALES, [1, 2])

    assert result.success is True
    assert result.data == [{"id": 1}, {"id": 2}]
    assert result.attempts == 1

    request = seen[0]
    assert request.url.path == "/api/sales/branch-optimized"
    assert request.url.params["branchIds"] == "1,2"
    assert request.url.params["optimized"] == "true"
    assert request.url.params["compression"] == "gzip"
    assert request.headers["Cache-Control"] == "no-cache"


@pytest.mark.asyncio
async def test_fetch_wraps_single_object_in_list():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": {"total": 3}})

    result = await make_client(handler).fetch(DataType.PERFORMANCE, [1])
    assert result.data == [{"total": 3}]


@pytest.mark.asyncio
async def test_fetch_page_params():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": []})

    result = await make_client(handler).fetch_page([3, 4], page=2, page_size=25)
    assert result.success is True
    assert seen[0].url.path == "/api/data/paged"
    assert seen[0].url.params["page"] == "2"
    assert seen[0].url.params["pageSize"] == "25"


# ── Retries ──────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_retries_then_succeeds():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"success": True, "data": [1]})

    result = await make_client(handler).fetch(DataType.INVENTORY, [1])
    assert result.success is True
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_exhausted_retries_return_failed_result():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_client(handler, max_retries=2).fetch(DataType.SALES, [1])
    assert result.success is False
    assert result.data == []
    assert calls == 3
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_timeout_is_retried():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        raise httpx.ReadTimeout("slow", request=request)

    result = await make_client(handler, max_retries=1).fetch(DataType.SALES, [1])
    assert result.success is False
    assert calls == 2
    assert "Timed out" in result.error


@pytest.mark.asyncio
async def test_server_error_status_in_message():
    def handler(request):
        return httpx.Response(500)

    result = await make_client(handler, max_retries=0).fetch(DataType.SALES, [1])
    assert result.success is False
    assert "500" in result.error


# ── Envelope handling ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_malformed_envelope():
    def handler(request):
        return httpx.Response(200, json={"rows": []})

    result = await make_client(handler).fetch(DataType.SALES, [1])
    assert result.success is False
    assert result.error == "Malformed response envelope"


@pytest.mark.asyncio
async def test_non_json_body_is_malformed():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    result = await make_client(handler).fetch(DataType.SALES, [1])
    assert result.success is False
    assert result.error == "Malformed response envelope"


@pytest.mark.asyncio
async def test_backend_reported_failure():
    def handler(request):
        return httpx.Response(200, json={"success": False, "data": None})

    result = await make_client(handler).fetch(DataType.ANALYTICS, [1])
    assert result.success is False
    assert result.error == "Backend reported failure"
    assert result.attempts == 1
