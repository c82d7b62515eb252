"""
Debounced, deduplicating request batcher.

Load requests are collected until no new request has arrived for the debounce
window, then drained as one batch: high priority requests one after another
in arrival order, then medium and low priority requests concurrently. Each
request resolves its own future; one failing request never aborts the batch.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from models import BatchLoadRequest, Priority

logger = logging.getLogger("branch-sync.batcher")

BatchExecutor = Callable[[BatchLoadRequest], Awaitable[Any]]


@dataclass(eq=False)
class _Pending:
    request: BatchLoadRequest
    future: asyncio.Future


@dataclass
class BatchReport:
    executed: int = 0
    failed: int = 0
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)


class RequestBatcher:
    """
    Collects BatchLoadRequests and executes them through `executor`.

    Usage:
        batcher = RequestBatcher(executor=orchestrator.execute_request)
        future = batcher.enqueue(BatchLoadRequest(branch_ids=[1], data_types=["sales"]))
        results = await future
    """

    def __init__(
        self,
        executor: BatchExecutor,
        debounce_seconds: float = 0.3,
        max_concurrency: int = 8,
    ):
        self._executor = executor
        self.debounce_seconds = debounce_seconds
        self.max_concurrency = max_concurrency
        self._pending: list[_Pending] = []
        self._in_flight: list[_Pending] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._drains: set[asyncio.Task] = set()
        self.batches_run = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def enqueue(self, request: BatchLoadRequest) -> asyncio.Future:
        """
        Queue a request and restart the debounce window. A request equivalent
        to one still waiting in the queue is dropped and shares its future; if
        the newcomer forces a refresh, the queued request is upgraded to force
        one too. Requests already draining are never matched.
        """
        existing = self._find(request)
        if existing is not None:
            logger.debug("Dropping duplicate request for branches %s", request.branch_ids)
            if request.force_refresh and not existing.request.force_refresh:
                existing.request = existing.request.model_copy(update={"force_refresh": True})
            return existing.future

        loop = asyncio.get_running_loop()
        item = _Pending(request=request, future=loop.create_future())
        self._pending.append(item)
        self._schedule(loop)
        return item.future

    def configure(self, debounce_seconds: Optional[float] = None, max_concurrency: Optional[int] = None) -> None:
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds
        if max_concurrency is not None:
            self.max_concurrency = max(1, max_concurrency)
        logger.info(
            "Batcher configured: debounce=%dms concurrency=%d",
            self.debounce_seconds * 1000, self.max_concurrency,
        )

    async def flush(self) -> BatchReport:
        """Skip the rest of the debounce window and drain now."""
        self._cancel_timer()
        return await self.drain()

    async def drain(self) -> BatchReport:
        """Execute everything queued. Always returns, whatever the requests do."""
        batch, self._pending = self._pending, []
        report = BatchReport()
        if not batch:
            return report

        self._in_flight.extend(batch)
        self.batches_run += 1
        start = time.perf_counter()
        high = [p for p in batch if p.request.priority == Priority.HIGH]
        rest = [p for p in batch if p.request.priority != Priority.HIGH]
        logger.info(
            "Processing %d batch requests (%d high, %d medium/low)", len(batch), len(high), len(rest)
        )

        try:
            for item in high:
                await self._run(item, report)

            if rest:
                semaphore = asyncio.Semaphore(self.max_concurrency)

                async def bounded(item: _Pending) -> None:
                    async with semaphore:
                        await self._run(item, report)

                await asyncio.gather(*(bounded(item) for item in rest))
        finally:
            self._in_flight = [p for p in self._in_flight if p not in batch]

        report.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Batch processing completed: %d executed, %d failed in %dms",
            report.executed, report.failed, report.duration_ms,
        )
        return report

    async def close(self) -> None:
        """Cancel the debounce timer and any drain still running."""
        self._cancel_timer()
        for task in list(self._drains):
            task.cancel()
        if self._drains:
            await asyncio.gather(*self._drains, return_exceptions=True)
        for item in self._pending:
            if not item.future.done():
                item.future.cancel()
        self._pending = []

    async def _run(self, item: _Pending, report: BatchReport) -> None:
        request = item.request
        try:
            result = await self._executor(request)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            report.failed += 1
            report.errors.append(str(exc))
            logger.error("Batch request failed for branches %s: %s", request.branch_ids, exc)
            if not item.future.done():
                item.future.set_exception(exc)
                # Nobody may be awaiting this future; mark the exception as seen
                item.future.exception()
            return

        report.executed += 1
        if not item.future.done():
            item.future.set_result(result)

    def _find(self, request: BatchLoadRequest) -> Optional[_Pending]:
        key = request.dedup_key
        for item in self._pending:
            if item.request.dedup_key == key:
                return item
        return None

    def _schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce_seconds, self._start_drain)

    def _start_drain(self) -> None:
        self._timer = None
        task = asyncio.create_task(self.drain(), name="batch-drain")
        self._drains.add(task)
        task.add_done_callback(self._drains.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
