"""
Paged ("lazy") loading of branch data.

Pages are served from the cache when a previous read-ahead stored them;
otherwise fetched from the backend's paged endpoint. After each page the next
few pages are fetched ahead of time into the cache.
"""

import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from cache import MISS, CacheStore, estimate_size
from client import BranchApiClient
from models import OperationType
from monitor import PerformanceMonitor

logger = logging.getLogger("branch-sync.paging")


@dataclass
class Page:
    page: int
    data: list[Any] = field(default_factory=list)
    has_more: bool = False
    from_cache: bool = False
    success: bool = True


class PagedLoader:
    def __init__(
        self,
        client: BranchApiClient,
        cache: CacheStore,
        monitor: PerformanceMonitor,
        preload_next_pages: int = 1,
    ):
        self.client = client
        self.cache = cache
        self.monitor = monitor
        self.preload_next_pages = preload_next_pages

    async def load_page(self, branch_ids: Sequence[int], page: int, page_size: int) -> Page:
        start = time.perf_counter()
        key = CacheStore.make_page_key(branch_ids, page)

        cached = self.cache.get(key)
        if cached is not MISS:
            self.monitor.record(
                OperationType.CACHE_HIT, branch_ids,
                (time.perf_counter() - start) * 1000, estimate_size(cached),
            )
            return Page(page=page, data=cached, has_more=len(cached) == page_size, from_cache=True)

        result = await self.client.fetch_page(branch_ids, page, page_size)
        self.monitor.record(
            OperationType.LAZY_LOAD, branch_ids,
            (time.perf_counter() - start) * 1000, estimate_size(result.data),
        )
        if not result.success:
            logger.error("Paged data loading failed for page %d: %s", page, result.error)
            return Page(page=page, success=False)

        if self.preload_next_pages > 0 and len(result.data) == page_size:
            await self.preload_pages(branch_ids, page + 1, page_size)

        return Page(page=page, data=result.data, has_more=len(result.data) == page_size)

    async def preload_pages(self, branch_ids: Sequence[int], start_page: int, page_size: int) -> int:
        """Fetch up to `preload_next_pages` pages into the cache. Stops at the first failure."""
        stored = 0
        for page in range(start_page, start_page + self.preload_next_pages):
            key = CacheStore.make_page_key(branch_ids, page)
            if key in self.cache:
                continue
            result = await self.client.fetch_page(branch_ids, page, page_size)
            if not result.success:
                logger.warning("Failed to preload page %d, stopping read-ahead", page)
                break
            self.cache.set(key, result.data, branch_ids[0] if branch_ids else 0)
            stored += 1
            if len(result.data) < page_size:
                break
        return stored

    async def iter_pages(self, branch_ids: Sequence[int], page_size: int, start_page: int = 0) -> AsyncIterator[Page]:
        """Yield successive pages until a short page or a failure."""
        page = start_page
        while True:
            current = await self.load_page(branch_ids, page, page_size)
            if not current.success:
                return
            yield current
            if not current.has_more:
                return
            page += 1
