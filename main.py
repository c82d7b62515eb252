"""
branch-sync — client-side cache and multi-branch synchronization engine.
Stack: FastAPI (operations surface) + httpx (backend calls) + tenacity (retries).

Capabilities:
- /api/data/{type}    → Cache-first branch data loads
- /api/data/paged     → Paged loads with read-ahead
- /api/sync           → Tracked multi-branch loads with per-branch progress
- /api/sync/smart     → Staleness-driven sync (critical data first)
- /api/sync/status    → Per-branch sync state
- /api/performance    → Rolling grade, hit ratio and recommendations
- /api/report         → Full optimization report incl. branch health
- /api/optimization/performance-mode → Forced high-priority refresh of active branches
- Branch hierarchy + active set management for predictive preloading
"""

import dataclasses
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from branches import BranchInfo, BranchState
from client import BranchApiClient
from models import TRACKED_TYPES, DataType, LoadReport, LoadResult, OptimizedLoadRequest, Priority, SyncNeed
from orchestrator import SyncOrchestrator
from settings import configure_logging, settings

# ── Bootstrap ────────────────────────────────────────────────────────────────
load_dotenv()

configure_logging(settings.log_level)
logger = logging.getLogger("branch-sync")

VERSION = "1.0.0"


# ── Models ───────────────────────────────────────────────────────────────────
class SyncRequest(BaseModel):
    """Request model for a tracked multi-branch load."""
    branch_ids: list[int]
    data_types: list[DataType] = list(TRACKED_TYPES)
    priority: Priority = Priority.MEDIUM
    force_refresh: bool = False

    @field_validator("branch_ids")
    @classmethod
    def validate_branch_ids(cls, v: list[int]) -> list[int]:
        if len(v) > 50:
            raise ValueError("Maximum 50 branches per sync request")
        if len(v) == 0:
            raise ValueError("At least 1 branch id is required")
        return v


class SmartSyncRequest(BaseModel):
    branch_ids: Optional[list[int]] = None


class ActiveBranchesRequest(BaseModel):
    branch_ids: list[int]


class BranchesRequest(BaseModel):
    branches: list[BranchInfo]


def _parse_branch_ids(raw: str) -> list[int]:
    """Parse a comma-separated list of branch ids."""
    try:
        ids = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise ValueError(f"Invalid branch id list: {raw!r}") from exc
    if not ids:
        raise ValueError("At least 1 branch id is required")
    return ids


# ── Engine ───────────────────────────────────────────────────────────────────
http_client: Optional[httpx.AsyncClient] = None
engine: Optional[SyncOrchestrator] = None
branch_state = BranchState()


def get_engine() -> SyncOrchestrator:
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return engine


def require_admin(request: Request) -> None:
    """Destructive endpoints need the admin key when one is configured."""
    if settings.admin_api_key and request.headers.get("X-API-Key") != settings.admin_api_key:
        raise HTTPException(status_code=403, detail="Cache management requires a valid X-API-Key header")


# ── Lifespan ─────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Startup and shutdown lifecycle."""
    global http_client, engine

    logger.info("──────────────────────────────────────────")
    logger.info("  branch-sync v%s starting up", VERSION)
    logger.info("  Environment: %s", settings.env)
    logger.info("  Backend: %s", settings.api_base_url)
    logger.info("  Cache TTL: %ds | Budget: %dMB", settings.cache_ttl, settings.cache_max_bytes // (1024 * 1024))
    logger.info("  Debounce: %dms | Concurrency: %d", settings.debounce_seconds * 1000, settings.max_concurrency)
    logger.info("──────────────────────────────────────────")

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
    )
    client = BranchApiClient(
        http_client,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_backoff=settings.retry_backoff,
    )
    engine = SyncOrchestrator(client, branch_state, config=settings)
    await engine.start()

    yield  # ← app is running

    await engine.stop()
    engine = None
    await http_client.aclose()
    logger.info("HTTP client closed")


# ── FastAPI App Setup ────────────────────────────────────────────────────────
app = FastAPI(
    title="branch-sync",
    version=VERSION,
    description="Cache and multi-branch synchronization engine for the retail front-end.",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "data", "description": "Cache-first branch data loads"},
        {"name": "sync", "description": "Tracked and staleness-driven branch sync"},
        {"name": "cache", "description": "Cache management and stats"},
        {"name": "branches", "description": "Branch hierarchy, active set and health"},
        {"name": "performance", "description": "Grades, insights and reports"},
        {"name": "health", "description": "Service health monitoring"},
    ],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-API-Key"],
)


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Standardized error response format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "request_failed",
            "detail": exc.detail,
            "code": f"ERR_{exc.status_code}"
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "detail": str(exc),
            "code": "ERR_400"
        }
    )


# ── Request timing middleware ────────────────────────────────────────────────
@app.middleware("http")
async def add_timing_and_logging(request: Request, call_next):
    """Add response time tracking and a request ID."""
    start = time.time()

    request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])
    request.state.request_id = request_id

    logger.info("[%s] %s %s", request_id, request.method, request.url.path)

    response = await call_next(request)

    elapsed = round(time.time() - start, 3)
    response.headers["X-Response-Time"] = f"{elapsed}s"
    response.headers["X-Request-ID"] = request_id

    cache_status = getattr(request.state, "cache_status", None)
    if cache_status:
        response.headers["X-Cache"] = cache_status

    logger.info(
        "[%s] %s %s → %s (%ss)%s",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed,
        f" [CACHE {cache_status}]" if cache_status else "",
    )
    return response


# ── Routes ───────────────────────────────────────────────────────────────────
@app.get("/health", tags=["health"])
async def health():
    """Health check for uptime monitors."""
    current = get_engine()
    insights = current.monitor.insights(current.cache.utilization * 100)
    return {
        "status": "healthy",
        "service": "branch-sync",
        "version": VERSION,
        "environment": settings.env,
        "grade": insights.grade.value if insights else None,
        "optimization_enabled": current.optimization_enabled,
        "suspended": current.suspended,
        "load_mode": current.load_mode.value,
        "active_operations": current.active_operations,
        "cache_entries": len(current.cache),
    }


# ── Data ─────────────────────────────────────────────────────────────────────
@app.get("/api/data/paged", tags=["data"])
async def load_paged(request: Request, branch_ids: str, page: int = 0, page_size: int = 50):
    """Load one page of branch data; the following pages are read ahead into the cache."""
    if page < 0 or not 1 <= page_size <= 500:
        raise ValueError("page must be >= 0 and page_size between 1 and 500")
    result = await get_engine().load_page(_parse_branch_ids(branch_ids), page, page_size)
    request.state.cache_status = "HIT" if result.from_cache else "MISS"
    return dataclasses.asdict(result)


@app.get("/api/data/{data_type}", response_model=LoadResult, tags=["data"])
async def load_data(request: Request, data_type: DataType, branch_ids: str, force_refresh: bool = False):
    """
    Load one data type for a set of branches, cache first.

    **Usage:**
    ```
    GET /api/data/sales?branch_ids=1,2
    ```
    """
    result = await get_engine().load_branch_data(data_type, _parse_branch_ids(branch_ids), force_refresh)
    request.state.cache_status = "HIT" if result.metadata.from_cache else "MISS"
    return result


# ── Sync ─────────────────────────────────────────────────────────────────────
@app.post("/api/sync", response_model=LoadReport, tags=["sync"])
@limiter.limit(settings.rate_limit_sync)
async def sync_branches(request: Request, req: SyncRequest):
    """
    Load branches through the batcher with per-branch progress tracking.

    **Usage:**
    ```json
    POST /api/sync
    {"branch_ids": [1, 2], "data_types": ["sales", "notifications"], "priority": "high"}
    ```
    """
    return await get_engine().load_branches_optimized(OptimizedLoadRequest(
        branch_ids=req.branch_ids,
        data_types=req.data_types,
        priority=req.priority,
        force_refresh=req.force_refresh,
    ))


@app.post("/api/sync/smart", response_model=list[SyncNeed], tags=["sync"])
@limiter.limit(settings.rate_limit_sync)
async def smart_sync(request: Request, req: SmartSyncRequest):
    """Sync whatever is stale; defaults to the active branches."""
    branch_ids = req.branch_ids if req.branch_ids is not None else branch_state.active_branch_ids()
    if not branch_ids:
        raise HTTPException(status_code=400, detail="No branch ids given and no active branches set.")
    return await get_engine().smart_sync(branch_ids)


@app.post("/api/sync/refresh", tags=["sync"])
@limiter.limit(settings.rate_limit_sync)
async def refresh_all(request: Request):
    """Force-refresh every tracked data type of the active branches."""
    report = await get_engine().refresh_all_branches()
    if report is None:
        raise HTTPException(status_code=400, detail="No active branches to refresh.")
    return report


@app.get("/api/sync/status", tags=["sync"])
async def sync_status():
    current = get_engine()
    return {
        "progress": current.sync_progress(),
        "statuses": [s.model_dump() for s in current.sync_statuses()],
        "last_full_sync": current.last_full_sync,
    }


@app.get("/api/sync/needs", response_model=list[SyncNeed], tags=["sync"])
async def sync_needs(branch_ids: str):
    return get_engine().analyze_sync_needs(_parse_branch_ids(branch_ids))


# ── Cache Management ─────────────────────────────────────────────────────────
@app.get("/api/cache/stats", tags=["cache"])
async def cache_stats():
    """Return cache statistics — entries, size, utilization, hit rate."""
    return get_engine().cache.stats()


@app.delete("/api/cache", tags=["cache"])
async def cache_clear(request: Request):
    """Clear all cached entries."""
    require_admin(request)
    count = get_engine().clear_cache()
    return {"cleared": count, "message": f"Cleared {count} cached entries"}


@app.delete("/api/cache/branches/{branch_id}", tags=["cache"])
async def cache_invalidate_branch(request: Request, branch_id: int):
    """Drop every cached entry of one branch."""
    require_admin(request)
    count = get_engine().invalidate_branch(branch_id)
    return {"cleared": count, "branch_id": branch_id}


# ── Branches ─────────────────────────────────────────────────────────────────
@app.put("/api/branches", tags=["branches"])
async def set_branches(req: BranchesRequest):
    """Replace the accessible branch hierarchy used for names and predictions."""
    branch_state.set_accessible(req.branches)
    return {"branches": len(req.branches)}


@app.put("/api/branches/active", tags=["branches"])
async def set_active_branches(req: ActiveBranchesRequest):
    """Change the active branch set. Triggers a smart sync when optimization is on."""
    branch_state.set_active(req.branch_ids)
    return {
        "active_branch_ids": branch_state.active_branch_ids(),
        "predicted_next": get_engine().preloader.predict(),
    }


@app.get("/api/branches/{branch_id}/health", tags=["branches"])
async def branch_health(branch_id: int):
    result = get_engine().branch_health(branch_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No data loaded yet for branch {branch_id}.")
    return result


# ── Performance ──────────────────────────────────────────────────────────────
@app.get("/api/performance", tags=["performance"])
async def performance():
    return get_engine().performance_report()


@app.get("/api/report", tags=["performance"])
async def optimization_report():
    return get_engine().optimization_report()


@app.post("/api/optimization/performance-mode", tags=["performance"])
@limiter.limit(settings.rate_limit_sync)
async def performance_mode(request: Request):
    """Queue a forced high-priority refresh of sales, inventory and analytics for every active branch."""
    futures = get_engine().enable_performance_mode()
    return {"queued": len(futures)}


@app.post("/api/optimization/{state}", tags=["performance"])
async def toggle_optimization(state: str):
    """Turn automatic syncing and preloading on or off."""
    current = get_engine()
    if state == "enable":
        current.enable_optimization()
    elif state == "disable":
        current.disable_optimization()
    else:
        raise HTTPException(status_code=404, detail="Use /enable or /disable.")
    return {"optimization_enabled": current.optimization_enabled}


# ── Entrypoint ───────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.is_development,
    )
