"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
    PaginatedResponse
)
from models.catalog import (
    SelectedOption,
    InventoryLevel,
    CatalogRecord,
    CatalogPage,
    InventoryAdjustResult,
    VariantUpdateResult,
)
from models.sync_run import (
    SyncRunStatus,
    SyncType,
    SyncRunResponse,
    SyncRunListResponse,
    ProgressSnapshot,
    ProgressResponse,
)
from models.field_mapping import (
    FieldMappingCreate,
    FieldMappingResponse,
    FieldMappingBulkUpdate,
    FieldMappingListResponse,
)
from models.spreadsheet_connection import (
    SpreadsheetConnection,
    ConnectionStatusResponse,
    SelectSheetRequest,
    StructureValidationRequest,
    StructureValidation,
    SheetPage,
)
from models.shop import Shop
from models.sync import (
    SyncStrategy,
    ConflictResolution,
    SyncStartRequest,
    SyncStartResponse,
    PreviewChange,
    PreviewRow,
    ImportValidation,
    ExportValidation,
    ExportSummary,
    ImportSummary,
)
from models.webhook import (
    InventoryLevelWebhook,
    WebhookAccepted,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    "PaginatedResponse",

    # Catalog
    "SelectedOption",
    "InventoryLevel",
    "CatalogRecord",
    "CatalogPage",
    "InventoryAdjustResult",
    "VariantUpdateResult",

    # Sync runs
    "SyncRunStatus",
    "SyncType",
    "SyncRunResponse",
    "SyncRunListResponse",
    "ProgressSnapshot",
    "ProgressResponse",

    # Field mappings
    "FieldMappingCreate",
    "FieldMappingResponse",
    "FieldMappingBulkUpdate",
    "FieldMappingListResponse",

    # Connections
    "SpreadsheetConnection",
    "ConnectionStatusResponse",
    "SelectSheetRequest",
    "StructureValidationRequest",
    "StructureValidation",
    "SheetPage",

    # Shops
    "Shop",

    # Sync
    "SyncStrategy",
    "ConflictResolution",
    "SyncStartRequest",
    "SyncStartResponse",
    "PreviewChange",
    "PreviewRow",
    "ImportValidation",
    "ExportValidation",
    "ExportSummary",
    "ImportSummary",

    # Webhooks
    "InventoryLevelWebhook",
    "WebhookAccepted",
]
