"""
Multi-branch sync orchestration.

The SyncOrchestrator owns one engine instance: the cache, the performance
monitor, the request batcher and the predictive preloader. It decides which
branch/data-type pairs are stale, loads them through the batcher with
per-branch progress tracking, keeps a snapshot of what is known about each
branch, and regulates itself from the monitor's grade:

- grade F: clear the cache and pause automatic syncing for a cool-down
- grade D/F on the periodic check: clear the cache and reduce load
- grade A/B on the periodic check: enable advanced features (wider
  concurrency, preloading after every smart sync)

Loads never raise past this layer. Failures surface as a branch in `error`
status with a message, or as a failed LoadResult.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Coroutine, Iterable, Mapping
from enum import Enum
from typing import Any, Optional

from batcher import RequestBatcher
from branches import BranchState
from cache import MISS, CacheStore, estimate_size
from client import BranchApiClient
from errors import PartialBatchFailure
from events import EventChannel
from health import branch_health_score, branch_recommendations, health_status
from models import (
    CRITICAL_TYPES,
    TRACKED_TYPES,
    BatchLoadRequest,
    BranchPerformance,
    DataType,
    DataTypeSnapshot,
    Grade,
    LoadMetadata,
    LoadReport,
    LoadResult,
    OperationType,
    OptimizedBranchSnapshot,
    OptimizedLoadRequest,
    Priority,
    SyncNeed,
    SyncState,
    SyncStatus,
)
from monitor import PerformanceInsights, PerformanceMonitor
from paging import Page, PagedLoader
from preloader import PredictivePreloader
from scheduler import Ticker
from settings import Settings
from settings import settings as default_settings

logger = logging.getLogger("branch-sync.orchestrator")

# How long each data type may go without a successful sync (seconds)
FRESHNESS_BUDGETS = {
    DataType.NOTIFICATIONS: 30,
    DataType.SALES: 2 * 60,
    DataType.INVENTORY: 5 * 60,
    DataType.ANALYTICS: 10 * 60,
}
DEFAULT_FRESHNESS_BUDGET = 5 * 60
SECONDS_PER_STEP_ESTIMATE = 2


class LoadMode(str, Enum):
    NORMAL = "normal"
    REDUCED = "reduced"
    ADVANCED = "advanced"


def freshness_budget(data_type: DataType) -> float:
    return FRESHNESS_BUDGETS.get(data_type, DEFAULT_FRESHNESS_BUDGET)


def analyze_sync_needs(
    snapshots: Mapping[int, OptimizedBranchSnapshot],
    branch_ids: Iterable[int],
    now: float,
) -> list[SyncNeed]:
    """
    Decide what each branch needs reloaded.

    A branch never synced needs every tracked type at high priority. Otherwise
    a type is stale once its age exceeds its budget; a stale critical type
    (notifications, sales) makes the branch high priority, any other stale
    type medium. Fully fresh branches are left out.
    """
    needs: list[SyncNeed] = []

    for branch_id in branch_ids:
        snapshot = snapshots.get(branch_id)
        if snapshot is None:
            needs.append(SyncNeed(
                branch_id=branch_id,
                data_types=list(TRACKED_TYPES),
                is_stale=True,
                priority=Priority.HIGH,
            ))
            continue

        stale: list[DataType] = []
        for data_type in TRACKED_TYPES:
            info = snapshot.data_types.get(data_type)
            if info is None or info.last_sync is None:
                stale.append(data_type)
            elif now - info.last_sync > freshness_budget(data_type):
                stale.append(data_type)

        if stale:
            critical = any(t in CRITICAL_TYPES for t in stale)
            needs.append(SyncNeed(
                branch_id=branch_id,
                data_types=stale,
                is_stale=True,
                priority=Priority.HIGH if critical else Priority.MEDIUM,
            ))

    return needs


class SyncOrchestrator:
    """
    Usage:
        async with httpx.AsyncClient() as http:
            client = BranchApiClient(http, settings.api_base_url)
            engine = SyncOrchestrator(client, BranchState(branches))
            await engine.start()
            report = await engine.load_branches_optimized(
                OptimizedLoadRequest(branch_ids=[1, 2], priority="high")
            )
            await engine.stop()
    """

    def __init__(
        self,
        client: BranchApiClient,
        branch_state: BranchState,
        config: Optional[Settings] = None,
        cache: Optional[CacheStore] = None,
        monitor: Optional[PerformanceMonitor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or default_settings
        self.client = client
        self.branch_state = branch_state
        self._clock = clock

        self.cache = cache or CacheStore(
            default_ttl=self.config.cache_ttl,
            max_size=self.config.cache_max_bytes,
            cleanup_threshold=self.config.cleanup_threshold,
            cleanup_fraction=self.config.cleanup_fraction,
            clock=clock,
        )
        self.monitor = monitor or PerformanceMonitor(
            capacity=self.config.metrics_capacity,
            window=self.config.metrics_window,
            clock=clock,
        )
        self.batcher = RequestBatcher(
            executor=self.execute_request,
            debounce_seconds=self.config.debounce_seconds,
            max_concurrency=self.config.max_concurrency,
        )
        self.preloader = PredictivePreloader(branch_state, self.batcher)
        self.pager = PagedLoader(client, self.cache, self.monitor, self.config.paged_preload_pages)

        self._snapshots: dict[int, OptimizedBranchSnapshot] = {}
        self._statuses: dict[int, SyncStatus] = {}
        self._running: Counter[int] = Counter()
        self._error_counts: Counter[int] = Counter()
        self._last_error_time: dict[int, float] = {}
        self.sync_status_changes: EventChannel[tuple[SyncStatus, ...]] = EventChannel("sync-status")

        self.optimization_enabled = True
        self.suspended = False
        self.load_mode = LoadMode.NORMAL
        self.active_operations = 0
        self.last_full_sync: Optional[float] = None

        self._tasks: set[asyncio.Task] = set()
        self._resume_task: Optional[asyncio.Task] = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._tickers = [
            Ticker("cache-sweep", self.config.cache_sweep_interval, self.cache.maintain),
            Ticker("monitor", self.config.monitor_interval, self._monitor_tick),
            Ticker("branch-performance", self.config.monitor_interval, self.update_branch_performance),
            Ticker("optimization", self.config.optimization_interval, self.run_optimization_checks),
            Ticker("predictive", self.config.predictive_interval, self.predictive_preload),
        ]

    # ── Lifecycle ────────────────────────────────────────────────────────────
    async def start(self) -> None:
        logger.info("Starting branch sync orchestrator")
        self._unsubscribers.append(self.monitor.insight_changes.subscribe(self._on_insights))
        self._unsubscribers.append(self.branch_state.active_changes.subscribe(self._on_active_change))
        for ticker in self._tickers:
            ticker.start()

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for ticker in self._tickers:
            await ticker.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.batcher.close()
        logger.info("Branch sync orchestrator stopped")

    @property
    def loading(self) -> bool:
        """True while any tracked load is running."""
        return bool(self._running)

    @property
    def auto_sync_allowed(self) -> bool:
        return self.optimization_enabled and not self.suspended

    # ── Load primitive ───────────────────────────────────────────────────────
    async def load_branch_data(
        self,
        data_type: DataType,
        branch_ids: list[int],
        force_refresh: bool = False,
    ) -> LoadResult:
        """Load one data type for a set of branches, cache first. Never raises."""
        data_type = DataType(data_type)
        start = time.perf_counter()
        self.active_operations += 1

        def elapsed_ms() -> float:
            return (time.perf_counter() - start) * 1000

        def result(success: bool, data: list, from_cache: bool, error: Optional[str] = None) -> LoadResult:
            return LoadResult(
                success=success,
                data_type=data_type,
                data=data,
                error=error,
                metadata=LoadMetadata(
                    branch_ids=list(branch_ids),
                    cache_status="hit" if from_cache else "miss",
                    execution_time_ms=round(elapsed_ms(), 2),
                    from_cache=from_cache,
                    total_records=len(data),
                ),
            )

        try:
            key = CacheStore.make_key(data_type, branch_ids)

            if not force_refresh:
                cached = self.cache.get(key)
                if cached is not MISS:
                    self.monitor.record(OperationType.CACHE_HIT, branch_ids, elapsed_ms(), estimate_size(cached))
                    return result(True, cached, from_cache=True)

            api = await self.client.fetch(data_type, branch_ids)
            if api.success:
                self.cache.set(key, api.data, branch_ids[0] if branch_ids else 0)
                self.monitor.record(OperationType.API_CALL, branch_ids, elapsed_ms(), estimate_size(api.data))
            else:
                self.monitor.record(OperationType.CACHE_MISS, branch_ids, elapsed_ms(), 0)
            return result(api.success, api.data, from_cache=False, error=api.error)

        except Exception as exc:
            logger.error("Error loading %s data for branches %s: %s", data_type.value, branch_ids, exc)
            return result(False, [], from_cache=False, error=str(exc))
        finally:
            self.active_operations = max(0, self.active_operations - 1)

    async def execute_request(self, request: BatchLoadRequest) -> list[LoadResult]:
        """Batcher executor: every data type of the request, concurrently."""
        results = await asyncio.gather(*(
            self.load_branch_data(data_type, request.branch_ids, request.force_refresh)
            for data_type in request.data_types
        ))
        logger.debug(
            "Batch request completed for branches %s: %s",
            request.branch_ids,
            [(r.data_type.value, r.success, r.metadata.total_records) for r in results],
        )
        return list(results)

    # ── Sync analysis ────────────────────────────────────────────────────────
    def analyze_sync_needs(self, branch_ids: Iterable[int]) -> list[SyncNeed]:
        return analyze_sync_needs(self._snapshots, branch_ids, self._clock())

    async def smart_sync(self, branch_ids: Iterable[int]) -> list[SyncNeed]:
        """
        Reload what is stale. Critical types load now at high priority; the
        rest follows shortly after at low priority in the background.
        """
        branch_ids = list(branch_ids)
        logger.info("Running smart sync for branches: %s", branch_ids)

        needs = self.analyze_sync_needs(branch_ids)
        if not needs:
            logger.info("All branches are up to date")
            return needs

        critical_loads = []
        deferred: list[tuple[int, list[DataType]]] = []
        for need in needs:
            critical = [t for t in need.data_types if t in CRITICAL_TYPES]
            standard = [t for t in need.data_types if t not in CRITICAL_TYPES]
            if critical:
                critical_loads.append(self.load_branches_optimized(OptimizedLoadRequest(
                    branch_ids=[need.branch_id],
                    data_types=critical,
                    priority=Priority.HIGH,
                    force_refresh=need.is_stale,
                )))
            if standard:
                deferred.append((need.branch_id, standard))

        if critical_loads:
            await asyncio.gather(*critical_loads)
        if deferred:
            self._spawn(self._deferred_sync(deferred), "deferred-sync")
        if self.load_mode is LoadMode.ADVANCED:
            self.predictive_preload()
        return needs

    async def _deferred_sync(self, deferred: list[tuple[int, list[DataType]]]) -> None:
        await asyncio.sleep(self.config.deferred_sync_delay)
        await asyncio.gather(*(
            self.load_branches_optimized(OptimizedLoadRequest(
                branch_ids=[branch_id],
                data_types=data_types,
                priority=Priority.LOW,
                force_refresh=False,
            ))
            for branch_id, data_types in deferred
        ))

    # ── Tracked loading ──────────────────────────────────────────────────────
    async def load_branches_optimized(self, request: OptimizedLoadRequest) -> LoadReport:
        """
        Load every requested branch/data-type pair through the batcher while
        tracking per-branch progress, then rebuild the branch snapshots.
        Never raises: failures end up in the branches' sync status.
        """
        start = time.perf_counter()
        self._begin_run(request.branch_ids)
        logger.info(
            "Starting optimized load for branches %s (%s, priority=%s)",
            request.branch_ids, [t.value for t in request.data_types], request.priority.value,
        )

        try:
            self._init_statuses(request.branch_ids, len(request.data_types))

            futures = {
                (branch_id, data_type): self.batcher.enqueue(BatchLoadRequest(
                    branch_ids=[branch_id],
                    data_types=[data_type],
                    priority=request.priority,
                    force_refresh=request.force_refresh,
                ))
                for branch_id in request.branch_ids
                for data_type in request.data_types
            }

            results: dict[int, list[LoadResult]] = {}
            for branch_id in request.branch_ids:
                results[branch_id] = await self._await_branch(branch_id, request, futures)

            self._update_snapshots(results)
            self._complete_statuses(request.branch_ids)

            steps = len(futures)
            total_ms = (time.perf_counter() - start) * 1000
            self.monitor.record(
                OperationType.BATCH_LOAD,
                request.branch_ids,
                total_ms / steps if steps else 0.0,
                sum(estimate_size(r.data) for rs in results.values() for r in rs),
            )
            logger.info("Optimized loading completed in %dms", total_ms)

            report = self.performance_report()
            report.update(
                execution_time_ms=round(total_ms),
                branch_count=len(request.branch_ids),
                data_type_count=len(request.data_types),
            )
            return LoadReport(success=True, data=self.active_branch_data(), performance_report=report)

        except Exception as exc:
            logger.error("Optimized loading failed: %s", exc)
            for branch_id in request.branch_ids:
                self._fail_status(branch_id, str(exc))
            return LoadReport(success=False)
        finally:
            self._end_run(request.branch_ids)

    async def _await_branch(
        self,
        branch_id: int,
        request: OptimizedLoadRequest,
        futures: dict[tuple[int, DataType], asyncio.Future],
    ) -> list[LoadResult]:
        total = len(request.data_types)
        done: list[LoadResult] = []
        failed: list[str] = []

        for step, data_type in enumerate(request.data_types, start=1):
            try:
                loaded = await futures[(branch_id, data_type)]
                done.extend(loaded)
                if not all(r.success for r in loaded):
                    failed.append(data_type.value)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Failed to load %s for branch %d: %s", data_type.value, branch_id, exc)
                failed.append(data_type.value)

            self._update_progress(branch_id, step, total)
            if request.progress_callback is not None:
                request.progress_callback(self.sync_statuses())

        if failed:
            error = PartialBatchFailure([branch_id], failed)
            logger.warning("Branch %d: %s", branch_id, error)
            self._fail_status(branch_id, str(error))
        return done

    async def refresh_all_branches(self) -> Optional[LoadReport]:
        active = self.branch_state.active_branch_ids()
        if not active:
            logger.warning("No active branches to refresh")
            return None
        return await self.load_branches_optimized(OptimizedLoadRequest(
            branch_ids=active,
            data_types=list(TRACKED_TYPES),
            priority=Priority.HIGH,
            force_refresh=True,
        ))

    async def load_page(self, branch_ids: list[int], page: int, page_size: int) -> Page:
        return await self.pager.load_page(branch_ids, page, page_size)

    # ── Sync status ──────────────────────────────────────────────────────────
    def sync_statuses(self) -> list[SyncStatus]:
        return list(self._statuses.values())

    def sync_progress(self) -> dict:
        statuses = self.sync_statuses()
        total = len(statuses)
        completed = sum(1 for s in statuses if s.status == SyncState.SYNCED)
        overall = round(completed / total * 100) if total else 0
        return {"overall": overall, "completed": completed, "total": total}

    def _publish_statuses(self) -> None:
        self.sync_status_changes.publish(tuple(self._statuses.values()))

    def _begin_run(self, branch_ids: list[int]) -> None:
        # Statuses from finished runs do not carry over into a new run
        self._statuses = {b: s for b, s in self._statuses.items() if self._running[b] > 0}
        self._running.update(branch_ids)

    def _end_run(self, branch_ids: list[int]) -> None:
        self._running.subtract(branch_ids)
        self._running = +self._running

    def _init_statuses(self, branch_ids: list[int], type_count: int) -> None:
        for branch_id in branch_ids:
            self._statuses[branch_id] = SyncStatus(
                branch_id=branch_id,
                branch_name=self.branch_state.branch_name(branch_id),
                status=SyncState.PENDING,
                progress_percent=0,
                eta_seconds=type_count * SECONDS_PER_STEP_ESTIMATE,
            )
        self._publish_statuses()

    def _update_progress(self, branch_id: int, completed: int, total: int) -> None:
        status = self._statuses.get(branch_id)
        if status is None or status.status == SyncState.ERROR:
            return
        progress = min(100.0, max(0.0, completed / total * 100)) if total else 100.0
        self._statuses[branch_id] = status.model_copy(update={
            "status": SyncState.SYNCING,
            "progress_percent": progress,
            "eta_seconds": (total - completed) * SECONDS_PER_STEP_ESTIMATE,
        })
        self._publish_statuses()

    def _fail_status(self, branch_id: int, message: str) -> None:
        now = self._clock()
        self._error_counts[branch_id] += 1
        self._last_error_time[branch_id] = now
        status = self._statuses.get(branch_id) or SyncStatus(
            branch_id=branch_id, branch_name=self.branch_state.branch_name(branch_id)
        )
        self._statuses[branch_id] = status.model_copy(update={
            "status": SyncState.ERROR,
            "error_message": message,
            "eta_seconds": 0,
        })
        self._publish_statuses()

    def _complete_statuses(self, branch_ids: list[int]) -> None:
        now = self._clock()
        for branch_id in branch_ids:
            status = self._statuses.get(branch_id)
            if status is None or status.status == SyncState.ERROR:
                continue
            self._statuses[branch_id] = status.model_copy(update={
                "status": SyncState.SYNCED,
                "progress_percent": 100.0,
                "eta_seconds": 0,
                "last_sync_time": now,
            })
        self.last_full_sync = now
        self._publish_statuses()

    # ── Snapshots ────────────────────────────────────────────────────────────
    def snapshot(self, branch_id: int) -> Optional[OptimizedBranchSnapshot]:
        return self._snapshots.get(branch_id)

    def snapshots(self) -> dict[int, OptimizedBranchSnapshot]:
        return dict(self._snapshots)

    def active_branch_data(self) -> list[OptimizedBranchSnapshot]:
        return [
            self._snapshots[b] for b in self.branch_state.active_branch_ids() if b in self._snapshots
        ]

    def _update_snapshots(self, results: dict[int, list[LoadResult]]) -> None:
        now = self._clock()
        snapshots = dict(self._snapshots)

        for branch_id, loaded in results.items():
            previous = snapshots.get(branch_id)
            data_types = {
                t: DataTypeSnapshot() for t in TRACKED_TYPES
            } if previous is None else dict(previous.data_types)

            for r in loaded:
                if r.success:
                    data_types[r.data_type] = DataTypeSnapshot(count=len(r.data), last_sync=now, cached=True)

            snapshots[branch_id] = OptimizedBranchSnapshot(
                branch_id=branch_id,
                branch_name=self.branch_state.branch_name(branch_id),
                last_updated=now,
                data_types=data_types,
                performance=self.branch_performance(branch_id),
            )

        self._snapshots = snapshots

    def branch_performance(self, branch_id: int) -> BranchPerformance:
        metrics = self.monitor.metrics_for_branch(branch_id, limit=10)
        errors = self._error_counts[branch_id]
        last_error = self._last_error_time.get(branch_id)
        if not metrics:
            return BranchPerformance(error_count=errors, last_error_time=last_error)

        hits = sum(1 for m in metrics if m.operation_type == OperationType.CACHE_HIT)
        return BranchPerformance(
            load_time_ms=round(sum(m.execution_time_ms for m in metrics) / len(metrics)),
            cache_hit_ratio_percent=round(hits / len(metrics) * 100),
            error_count=errors,
            last_error_time=last_error,
        )

    def update_branch_performance(self) -> None:
        self._snapshots = {
            branch_id: snapshot.model_copy(update={"performance": self.branch_performance(branch_id)})
            for branch_id, snapshot in self._snapshots.items()
        }

    # ── Health & reporting ───────────────────────────────────────────────────
    def overall_performance_score(self) -> int:
        branches = self.active_branch_data()
        if not branches:
            return 0

        avg_load = sum(b.performance.load_time_ms for b in branches) / len(branches)
        avg_hit = sum(b.performance.cache_hit_ratio_percent for b in branches) / len(branches)
        error_branches = sum(1 for b in branches if b.performance.error_count > 0)

        time_score = max(0.0, 100 - avg_load / 10)
        reliability_score = max(0.0, 100 - error_branches / len(branches) * 50)
        return round((time_score + avg_hit + reliability_score) / 3)

    def branch_health(self, branch_id: int) -> Optional[dict]:
        snapshot = self._snapshots.get(branch_id)
        if snapshot is None:
            return None
        now = self._clock()
        score = branch_health_score(snapshot, now)
        return {
            "branch_id": branch_id,
            "branch_name": snapshot.branch_name,
            "score": score,
            "status": health_status(score),
            "recommendations": branch_recommendations(snapshot, now),
        }

    def performance_report(self) -> dict[str, Any]:
        insights = self.monitor.insights(self.cache.utilization * 100)
        return {
            "cache_statistics": self.cache.stats(),
            "performance_insights": insights.as_dict() if insights else None,
            "recommendations": list(insights.recommendations) if insights else [],
        }

    def optimization_report(self) -> dict[str, Any]:
        report = self.performance_report()
        report.update(
            overall_performance_score=self.overall_performance_score(),
            sync_progress=self.sync_progress(),
            branch_health_statuses=[
                self.branch_health(b.branch_id) for b in self.active_branch_data()
            ],
            optimization_enabled=self.optimization_enabled,
            suspended=self.suspended,
            load_mode=self.load_mode.value,
            last_full_sync=self.last_full_sync,
        )
        return report

    # ── Cache control ────────────────────────────────────────────────────────
    def clear_cache(self) -> int:
        return self.cache.clear()

    def invalidate_branch(self, branch_id: int) -> int:
        removed = self.cache.invalidate_branch(branch_id)
        snapshot = self._snapshots.get(branch_id)
        if snapshot is not None:
            self._snapshots[branch_id] = snapshot.model_copy(update={
                "data_types": {
                    t: info.model_copy(update={"cached": False})
                    for t, info in snapshot.data_types.items()
                },
            })
        return removed

    # ── Self-regulation ──────────────────────────────────────────────────────
    def run_optimization_checks(self) -> Optional[Grade]:
        insights = self.monitor.insights(self.cache.utilization * 100)
        if insights is None:
            return None

        if insights.grade in (Grade.D, Grade.F):
            logger.info("Grade %s: applying performance optimizations", insights.grade.value)
            self.clear_cache()
            self.reduce_system_load()
        elif insights.grade in (Grade.A, Grade.B):
            self.enable_advanced_features()
        return insights.grade

    def reduce_system_load(self) -> None:
        """Longer debounce, narrower concurrency, no speculative preloading."""
        self.load_mode = LoadMode.REDUCED
        self.batcher.configure(
            debounce_seconds=self.config.debounce_seconds * 2,
            max_concurrency=max(1, self.config.max_concurrency // 4),
        )

    def enable_advanced_features(self) -> None:
        """Default debounce, wider concurrency, preload after every smart sync."""
        self.load_mode = LoadMode.ADVANCED
        self.batcher.configure(
            debounce_seconds=self.config.debounce_seconds,
            max_concurrency=self.config.max_concurrency * 2,
        )

    def apply_emergency_optimizations(self) -> None:
        logger.warning("Applying emergency performance optimizations")
        self.clear_cache()
        self.suspended = True
        if self._resume_task is not None and not self._resume_task.done():
            self._resume_task.cancel()
        self._resume_task = self._spawn(self._resume_after(self.config.emergency_cooldown), "emergency-resume")

    async def _resume_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self.suspended = False
        logger.info("Emergency optimizations completed, automatic sync restored")

    def enable_optimization(self) -> None:
        self.optimization_enabled = True
        logger.info("Branch optimization enabled")

    def disable_optimization(self) -> None:
        self.optimization_enabled = False
        logger.warning("Branch optimization disabled")

    def enable_performance_mode(self) -> list[asyncio.Future]:
        """Force-refresh the heavier data types of every active branch at high priority."""
        logger.info("Enabling high-performance mode")
        return [
            self.batcher.enqueue(BatchLoadRequest(
                branch_ids=[branch_id],
                data_types=[DataType.SALES, DataType.INVENTORY, DataType.ANALYTICS],
                priority=Priority.HIGH,
                force_refresh=True,
            ))
            for branch_id in self.branch_state.active_branch_ids()
        ]

    def predictive_preload(self) -> list[int]:
        if not self.auto_sync_allowed or self.load_mode is LoadMode.REDUCED:
            return []
        return self.preloader.preload()

    # ── Event handlers ───────────────────────────────────────────────────────
    def _monitor_tick(self) -> None:
        self.monitor.refresh(self.cache.utilization * 100)

    def _on_insights(self, insights: Optional[PerformanceInsights]) -> None:
        if insights is not None and insights.grade == Grade.F:
            logger.warning("Performance degraded to grade F")
            self.apply_emergency_optimizations()

    def _on_active_change(self, branch_ids: tuple[int, ...]) -> None:
        if branch_ids and self.auto_sync_allowed:
            self._spawn(self.smart_sync(branch_ids), "smart-sync")

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
