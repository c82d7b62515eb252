"""
Backend API client for branch data.

Wraps the REST backend's branch-optimized endpoints. Every call has a timeout
and a bounded number of retries with linearly growing waits; when retries run
out the call resolves to a failed ApiResult instead of raising.
"""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from errors import RETRYABLE_ERRORS, FetchTimeout, NetworkUnavailable, ServerError
from models import DataType

logger = logging.getLogger("branch-sync.client")

ENDPOINTS = {
    DataType.SALES: "/sales/branch-optimized",
    DataType.INVENTORY: "/inventory/branch-optimized",
    DataType.ANALYTICS: "/analytics/branch-optimized",
    DataType.NOTIFICATIONS: "/notifications/branch-optimized",
    DataType.PERFORMANCE: "/performance/branch-optimized",
}
PAGED_ENDPOINT = "/data/paged"


class ApiEnvelope(BaseModel):
    """The backend's standard response wrapper."""
    success: bool
    data: Any = None


@dataclass
class ApiResult:
    success: bool
    data: list[Any] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0


def _as_list(data: Any) -> list[Any]:
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


class BranchApiClient:
    """
    Async client for the branch data endpoints.

    Usage:
        async with httpx.AsyncClient() as http:
            client = BranchApiClient(http, base_url="https://pos.example.com/api")
            result = await client.fetch(DataType.SALES, [1, 2])
            if result.success:
                ...
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    async def fetch(self, data_type: DataType, branch_ids: Iterable[int]) -> ApiResult:
        """Load one data type for a set of branches."""
        data_type = DataType(data_type)
        params = {
            "branchIds": ",".join(str(b) for b in branch_ids),
            "optimized": "true",
            "compression": "gzip",
        }
        headers = {"Accept-Encoding": "gzip, deflate", "Cache-Control": "no-cache"}
        return await self._get(f"{self.base_url}{ENDPOINTS[data_type]}", params, headers, data_type.value)

    async def fetch_page(self, branch_ids: Iterable[int], page: int, page_size: int) -> ApiResult:
        """Load one page of mixed branch data."""
        params = {
            "branchIds": ",".join(str(b) for b in branch_ids),
            "page": str(page),
            "pageSize": str(page_size),
            "optimized": "true",
        }
        return await self._get(f"{self.base_url}{PAGED_ENDPOINT}", params, None, f"page {page}")

    async def _get(self, url: str, params: dict, headers: Optional[dict], label: str) -> ApiResult:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_incrementing(start=self.retry_backoff, increment=self.retry_backoff),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        logger.warning("Retrying %s (attempt %d)", label, attempts)
                    payload = await self._request(url, params, headers)

        except RETRYABLE_ERRORS as exc:
            logger.error("API call failed for %s after %d attempts: %s", label, attempts, exc)
            return ApiResult(success=False, error=str(exc), attempts=attempts)

        try:
            envelope = ApiEnvelope.model_validate(payload)
        except ValidationError as exc:
            logger.error("Malformed response for %s: %s", label, exc.errors()[0]["msg"])
            return ApiResult(success=False, error="Malformed response envelope", attempts=attempts)

        if not envelope.success:
            logger.warning("Backend reported failure for %s", label)
        return ApiResult(
            success=envelope.success,
            data=_as_list(envelope.data),
            error=None if envelope.success else "Backend reported failure",
            attempts=attempts,
        )

    async def _request(self, url: str, params: dict, headers: Optional[dict]) -> Any:
        """One HTTP round trip, translated into the engine's error taxonomy."""
        try:
            resp = await self.http.get(url, params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FetchTimeout(f"Timed out after {self.timeout}s: {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise ServerError(exc.response.status_code) from exc
        except httpx.RequestError as exc:
            raise NetworkUnavailable(f"{type(exc).__name__}: {url}") from exc

        try:
            return resp.json()
        except json.JSONDecodeError:
            return None
