"""
Sync request and result schemas.
"""

from pydantic import ConfigDict, Field
from typing import Any, Optional
from enum import Enum

from models.base import BaseSchema


class SyncStrategy(str, Enum):
    """How much of the catalog a run covers."""
    FULL = "full"
    INCREMENTAL = "incremental"
    SELECTIVE = "selective"


class ConflictResolution(str, Enum):
    """What to do when the import phase reports per-row errors after an export."""
    SHOPIFY_WINS = "shopify_wins"
    SHEETS_WINS = "sheets_wins"
    MANUAL = "manual"
    MERGE = "merge"


class SyncStartRequest(BaseSchema):
    """
    Start a sync.

    Strategy and conflict policy are plain strings so unknown values reach
    the orchestrator and fail with a typed error.
    """

    strategy: str = Field(..., examples=["full", "incremental", "selective"])
    async_: bool = Field(True, alias="async")
    conflict_resolution: Optional[str] = Field(None, examples=["shopify_wins"])
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class SyncStartResponse(BaseSchema):
    """Run handle returned by start_sync."""

    success: bool = True
    sync_run_id: str
    status: str
    strategy: SyncStrategy
    message: Optional[str] = None
    result: Optional[dict[str, Any]] = None


class PreviewChange(BaseSchema):
    """Proposed change for one variant field."""

    current: Any = None
    new: Any = None


class PreviewRow(BaseSchema):
    """Import preview for one sheet row."""

    row: int
    variant_id: Optional[str] = None
    sku: Optional[str] = None
    changes: dict[str, PreviewChange] = Field(default_factory=dict)
    error: Optional[str] = None


class ImportValidation(BaseSchema):
    """
    Per-row validation of sheet rows before import.

    Row indexes are positions in the validated list (0-based). Rows are
    judged independently; a row's errors depend only on its own cells.
    """

    valid: list[dict[str, str]] = Field(default_factory=list)
    valid_indices: list[int] = Field(default_factory=list)
    errors: dict[int, list[str]] = Field(default_factory=dict)
    total_rows: int = 0

    @property
    def valid_rows(self) -> int:
        return len(self.valid)

    @property
    def error_rows(self) -> int:
        return len(self.errors)


class ExportValidation(BaseSchema):
    """Structural check of catalog records before export."""

    valid: bool = True
    errors: dict[int, list[str]] = Field(default_factory=dict)
    total_rows: int = 0

    @property
    def error_rows(self) -> int:
        return len(self.errors)


class ExportSummary(BaseSchema):
    """Outcome of one export phase."""

    records_processed: int = 0
    rows_written: int = 0
    chunks_written: int = 0
    chunks_failed: int = 0
    rows_updated: int = 0
    rows_appended: int = 0


class ImportSummary(BaseSchema):
    """Outcome of one import phase."""

    mode: str = "import"
    records_processed: int = 0
    total_rows: int = 0
    error_rows: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    message: Optional[str] = None
