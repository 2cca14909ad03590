"""
Field mapping API routes.
"""

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse
import structlog

from models.field_mapping import FieldMappingBulkUpdate, FieldMappingListResponse
from services.field_mapping_service import get_field_mapping_service
from services.field_registry import REGISTRY
from exceptions import AppError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/mappings", tags=["Mappings"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def check_fields(data: FieldMappingBulkUpdate) -> None:
    """Registry names or dotted record paths only."""
    unknown = [
        m.shopify_field for m in data.mappings
        if m.shopify_field not in REGISTRY and "." not in m.shopify_field
    ]
    if unknown:
        raise ValidationError(
            f"Unknown fields: {', '.join(unknown)}",
            code="UNKNOWN_FIELD",
            details={"unknown": unknown, "available": REGISTRY.names()}
        )


# ===================
# ROUTES
# ===================

@router.get("", response_model=FieldMappingListResponse)
def list_mappings(shop_id: str = Header(..., alias="X-Shop-Id")):
    """Active mappings plus the fields that can be mapped."""
    try:
        mappings = get_field_mapping_service().get_active(shop_id)
        return FieldMappingListResponse(
            data=mappings,
            total=len(mappings),
            available_fields=REGISTRY.names(),
        )
    except Exception as e:
        return handle_error(e)


@router.put("", response_model=FieldMappingListResponse)
def replace_mappings(
    data: FieldMappingBulkUpdate,
    shop_id: str = Header(..., alias="X-Shop-Id")
):
    """
    Replace the shop's mapping set.

    Runs already in progress keep the set they started with.
    """
    try:
        check_fields(data)
        mappings = get_field_mapping_service().replace_all(shop_id, data.mappings)
        return FieldMappingListResponse(
            data=mappings,
            total=len(mappings),
            available_fields=REGISTRY.names(),
        )
    except Exception as e:
        return handle_error(e)
