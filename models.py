"""
Shared records for the branch sync engine.

Enums and typed payloads passed between the cache, batcher, monitor and
orchestrator. Request/response shaped records are pydantic models so the
operations API can use them directly.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataType(str, Enum):
    SALES = "sales"
    INVENTORY = "inventory"
    ANALYTICS = "analytics"
    NOTIFICATIONS = "notifications"
    PERFORMANCE = "performance"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OperationType(str, Enum):
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    API_CALL = "api_call"
    BATCH_LOAD = "batch_load"
    LAZY_LOAD = "lazy_load"


class SyncState(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class Grade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


# Types tracked per branch in snapshots and freshness analysis
TRACKED_TYPES = (
    DataType.SALES,
    DataType.INVENTORY,
    DataType.ANALYTICS,
    DataType.NOTIFICATIONS,
)
CRITICAL_TYPES = (DataType.NOTIFICATIONS, DataType.SALES)
PRELOAD_TYPES = (DataType.SALES, DataType.INVENTORY)


# ── Batching ─────────────────────────────────────────────────────────────────
class BatchLoadRequest(BaseModel):
    """A load request for one or more branches and data types."""
    model_config = ConfigDict(frozen=True)

    branch_ids: list[int]
    data_types: list[DataType]
    priority: Priority = Priority.MEDIUM
    force_refresh: bool = False

    @field_validator("branch_ids")
    @classmethod
    def validate_branch_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least 1 branch id is required")
        return v

    @field_validator("data_types")
    @classmethod
    def validate_data_types(cls, v: list[DataType]) -> list[DataType]:
        if not v:
            raise ValueError("At least 1 data type is required")
        return v

    @property
    def dedup_key(self) -> tuple[frozenset, frozenset]:
        """Order-insensitive identity used to drop duplicate requests."""
        return frozenset(self.branch_ids), frozenset(self.data_types)


class LoadMetadata(BaseModel):
    branch_ids: list[int]
    cache_status: str  # "hit" | "miss"
    execution_time_ms: float
    from_cache: bool
    total_records: int


class LoadResult(BaseModel):
    """Outcome of a single data-type load for a set of branches."""
    success: bool
    data_type: DataType
    data: list[Any] = Field(default_factory=list)
    metadata: LoadMetadata
    error: Optional[str] = None


# ── Sync tracking ────────────────────────────────────────────────────────────
class SyncStatus(BaseModel):
    """Progress of one branch within a sync run."""
    branch_id: int
    branch_name: str
    status: SyncState = SyncState.PENDING
    progress_percent: float = 0.0
    eta_seconds: float = 0.0
    last_sync_time: Optional[float] = None
    error_message: Optional[str] = None


class SyncNeed(BaseModel):
    branch_id: int
    data_types: list[DataType]
    is_stale: bool = True
    priority: Priority


class DataTypeSnapshot(BaseModel):
    count: int = 0
    last_sync: Optional[float] = None
    cached: bool = False


class BranchPerformance(BaseModel):
    load_time_ms: float = 0.0
    cache_hit_ratio_percent: float = 0.0
    error_count: int = 0
    last_error_time: Optional[float] = None


class OptimizedBranchSnapshot(BaseModel):
    """What is currently known about a branch, rebuilt after every sync."""
    branch_id: int
    branch_name: str
    last_updated: float
    data_types: dict[DataType, DataTypeSnapshot] = Field(default_factory=dict)
    performance: BranchPerformance = Field(default_factory=BranchPerformance)


class OptimizedLoadRequest(BaseModel):
    """Entry request for a tracked multi-branch load."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    branch_ids: list[int]
    data_types: list[DataType] = Field(default_factory=lambda: list(TRACKED_TYPES))
    priority: Priority = Priority.MEDIUM
    force_refresh: bool = False
    progress_callback: Optional[Callable[[list[SyncStatus]], None]] = Field(
        default=None, exclude=True
    )

    @field_validator("branch_ids")
    @classmethod
    def validate_branch_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least 1 branch id is required")
        if len(v) > 50:
            raise ValueError("Maximum 50 branches per load request")
        return v


class LoadReport(BaseModel):
    success: bool
    data: list[OptimizedBranchSnapshot] = Field(default_factory=list)
    performance_report: Optional[dict[str, Any]] = None
