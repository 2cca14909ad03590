"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Sync requests
    InvalidStrategyError,
    InvalidConflictResolutionError,
    RowValidationError,
    VariantUpdateValidationError,
    InvalidOAuthStateError,

    # Not found
    SyncRunNotFoundError,
    PreviewNotFoundError,
    ShopNotFoundError,

    # State conflicts
    SheetsNotConnectedError,
    MappingsNotConfiguredError,

    # Upstream APIs
    UpstreamApiError,
    RateLimitedError,
    QuotaExceededError,
    CatalogUserError,
    BulkUpdateRolledBackError,
    InventoryAdjustError,
    AuthFailedError,
    RollbackError,

    # Notifications
    TelegramError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Sync requests
    "InvalidStrategyError",
    "InvalidConflictResolutionError",
    "RowValidationError",
    "VariantUpdateValidationError",
    "InvalidOAuthStateError",

    # Not found
    "SyncRunNotFoundError",
    "PreviewNotFoundError",
    "ShopNotFoundError",

    # State conflicts
    "SheetsNotConnectedError",
    "MappingsNotConfiguredError",

    # Upstream APIs
    "UpstreamApiError",
    "RateLimitedError",
    "QuotaExceededError",
    "CatalogUserError",
    "BulkUpdateRolledBackError",
    "InventoryAdjustError",
    "AuthFailedError",
    "RollbackError",

    # Notifications
    "TelegramError",
]
