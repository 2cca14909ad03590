"""
Sync run schemas.

A sync run is the authoritative state record of one sync execution.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class SyncRunStatus(str, Enum):
    """Lifecycle: pending -> processing -> completed | failed."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncRunStatus.COMPLETED, SyncRunStatus.FAILED)


class SyncType(str, Enum):
    """What kind of work a run performs."""
    PRODUCTS = "products"
    INVENTORY = "inventory"
    FULL = "full"
    INCREMENTAL = "incremental"
    SELECTIVE = "selective"
    IMPORT = "import"
    FULL_EXPORT = "full_export"
    FULL_IMPORT = "full_import"
    WEBHOOK = "webhook"
    CONFLICT_RESOLUTION = "conflict_resolution"


class SyncRunResponse(BaseSchema):
    """Sync run row as stored in sync_runs."""

    id: str = Field(..., description="Sync run UUID")
    shop_id: str = Field(..., description="Owning shop")
    sync_type: SyncType
    status: SyncRunStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = Field(0, ge=0)
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class SyncRunListResponse(BaseSchema):
    """List of sync runs with pagination."""

    data: list[SyncRunResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProgressSnapshot(BaseSchema):
    """Ephemeral progress of a run, polled by clients."""

    records_processed: int = 0
    total_records: Optional[int] = None
    percentage: int = Field(0, ge=0, le=100)
    updated_at: datetime

    @classmethod
    def build(cls, processed: int, total: Optional[int], now: datetime) -> "ProgressSnapshot":
        percentage = 0
        if total:
            percentage = min(100, int(processed / total * 100))
        return cls(
            records_processed=processed,
            total_records=total,
            percentage=percentage,
            updated_at=now,
        )


class ProgressResponse(BaseSchema):
    """What get_progress returns to callers."""

    sync_run_id: str
    status: SyncRunStatus
    records_processed: int = 0
    total_records: Optional[int] = None
    percentage: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
