"""
Custom exception classes for the application.

Every error surfaced to routes or persisted onto a sync run derives from
AppError so it can be rendered with to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "SYNC_RUN_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with current state (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None,
        code: Optional[str] = None,
        status_code: int = 503
    ):
        super().__init__(
            code=code or f"{service.upper()}_ERROR",
            message=message,
            status_code=status_code,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# SYNC REQUEST ERRORS
# ===================

class InvalidStrategyError(ValidationError):
    """Unknown sync strategy."""

    def __init__(self, strategy: str, valid: list[str]):
        super().__init__(
            code="INVALID_STRATEGY",
            message=f"Invalid sync strategy: {strategy}",
            details={"provided": strategy, "valid": valid}
        )


class InvalidConflictResolutionError(ValidationError):
    """Unknown conflict resolution policy."""

    def __init__(self, policy: str, valid: list[str]):
        super().__init__(
            code="INVALID_CONFLICT_RESOLUTION",
            message=f"Invalid conflict resolution: {policy}",
            details={"provided": policy, "valid": valid}
        )


class RowValidationError(ValidationError):
    """One or more sheet rows failed import validation."""

    def __init__(self, errors: dict[int, list[str]]):
        super().__init__(
            code="ROW_VALIDATION_FAILED",
            message=f"Import validation failed for {len(errors)} rows",
            details={"errors": {str(k): v for k, v in errors.items()}}
        )
        self.errors = errors


class VariantUpdateValidationError(ValidationError):
    """A variant update carries an invalid value."""

    def __init__(self, variant_id: str, reason: str):
        super().__init__(
            code="VARIANT_UPDATE_INVALID",
            message=f"Invalid update for variant {variant_id}: {reason}",
            details={"variant_id": variant_id, "reason": reason}
        )


class InvalidOAuthStateError(ValidationError):
    """OAuth state token is missing, tampered with or expired."""

    def __init__(self, reason: str = "Invalid or expired state"):
        super().__init__(
            code="INVALID_OAUTH_STATE",
            message=reason
        )


# ===================
# NOT FOUND ERRORS
# ===================

class SyncRunNotFoundError(NotFoundError):
    """Sync run not found (or owned by another shop)."""

    def __init__(self, run_id: str):
        super().__init__(
            resource="Sync run",
            identifier=run_id,
            code="SYNC_RUN_NOT_FOUND"
        )


class PreviewNotFoundError(NotFoundError):
    """No cached preview for the run."""

    def __init__(self, run_id: str):
        super().__init__(
            resource="Preview",
            identifier=run_id,
            code="PREVIEW_NOT_FOUND"
        )


class ShopNotFoundError(NotFoundError):
    """Shop not found."""

    def __init__(self, shop_id: str):
        super().__init__(
            resource="Shop",
            identifier=shop_id,
            code="SHOP_NOT_FOUND"
        )


# ===================
# STATE CONFLICTS
# ===================

class SheetsNotConnectedError(ConflictError):
    """Shop has no usable Google Sheets connection."""

    def __init__(self, shop_id: str):
        super().__init__(
            code="SHEETS_NOT_CONNECTED",
            message="Google Sheets is not connected for this shop",
            details={"shop_id": shop_id}
        )


class MappingsNotConfiguredError(ConflictError):
    """Shop has no active field mappings."""

    def __init__(self, shop_id: str):
        super().__init__(
            code="MAPPINGS_NOT_CONFIGURED",
            message="No active field mappings configured",
            details={"shop_id": shop_id}
        )


# ===================
# UPSTREAM API ERRORS
# ===================

class UpstreamApiError(ExternalServiceError):
    """Remote API failure; upstream message is preserved."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None,
        code: Optional[str] = None,
        status_code: int = 503
    ):
        super().__init__(
            service=service,
            message=message,
            details=details,
            code=code or "UPSTREAM_API_ERROR",
            status_code=status_code
        )


class RateLimitedError(UpstreamApiError):
    """Remote API asked us to slow down."""

    def __init__(self, service: str, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(
            service=service,
            message=message,
            details={"retry_after": retry_after},
            code="RATE_LIMITED",
            status_code=429
        )
        self.retry_after = retry_after


class QuotaExceededError(UpstreamApiError):
    """Remote API quota used up."""

    def __init__(self, service: str, message: str = "API quota exceeded"):
        super().__init__(
            service=service,
            message=message,
            code="QUOTA_EXCEEDED",
            status_code=429
        )


class CatalogUserError(UpstreamApiError):
    """Catalog mutation returned userErrors."""

    def __init__(self, message: str, user_errors: Optional[list[dict]] = None):
        super().__init__(
            service="shopify",
            message=message,
            details={"user_errors": user_errors or []},
            code="CATALOG_USER_ERROR",
            status_code=422
        )
        self.user_errors = user_errors or []


class BulkUpdateRolledBackError(UpstreamApiError):
    """A variant bulk update failed and applied changes were reverted."""

    def __init__(self, message: str, failed_variant_id: Optional[str], rolled_back: int):
        super().__init__(
            service="shopify",
            message=message,
            details={"failed_variant_id": failed_variant_id, "rolled_back": rolled_back},
            code="BULK_UPDATE_ROLLED_BACK"
        )
        self.failed_variant_id = failed_variant_id
        self.rolled_back = rolled_back


class InventoryAdjustError(UpstreamApiError):
    """Inventory adjustment failed for a location."""

    def __init__(self, location_id: str, message: str):
        super().__init__(
            service="shopify",
            message=message,
            details={"location_id": location_id},
            code="INVENTORY_ADJUST_FAILED"
        )
        self.location_id = location_id


class AuthFailedError(ExternalServiceError):
    """Credentials rejected; the user must reconnect."""

    def __init__(self, service: str, message: str = "Authentication failed, reconnect required"):
        super().__init__(
            service=service,
            message=message,
            code="AUTH_FAILED",
            status_code=401
        )


class RollbackError(AppError):
    """
    Compensating action failed.

    Built and logged only, never raised.
    """

    def __init__(self, action: str, message: str, details: Optional[dict] = None):
        super().__init__(
            code="ROLLBACK_FAILED",
            message=f"Rollback of {action} failed: {message}",
            status_code=500,
            details={"action": action, **(details or {})}
        )


class TelegramError(AppError):
    """Telegram API error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="TELEGRAM_ERROR",
            message=message,
            status_code=500,
            details=details
        )
