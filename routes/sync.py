"""
Sync API routes.

The acting shop comes from the X-Shop-Id header; session handling lives
in front of this service.
"""

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse
import structlog

from models.sync import SyncStartRequest, SyncStartResponse
from models.sync_run import ProgressResponse, SyncRunListResponse, SyncRunResponse
from services.sync_orchestrator import get_sync_orchestrator
from services.sync_run_service import get_sync_run_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])


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


# ===================
# ROUTES
# ===================

@router.post("/start", response_model=SyncStartResponse)
def start_sync(
    data: SyncStartRequest,
    shop_id: str = Header(..., alias="X-Shop-Id")
):
    """
    Start a sync.

    Async runs return a queued handle; poll /runs/{id}/progress. Inline
    runs block a threadpool worker, never the event loop.
    """
    try:
        result = get_sync_orchestrator(shop_id).start_sync(
            data.strategy,
            async_=data.async_,
            conflict_resolution=data.conflict_resolution,
            options=data.options,
        )
        return SyncStartResponse(**result)
    except Exception as e:
        return handle_error(e)


@router.get("/runs", response_model=SyncRunListResponse)
def list_runs(
    shop_id: str = Header(..., alias="X-Shop-Id"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page")
):
    """Sync history, newest first."""
    try:
        result = get_sync_run_service().list_runs(shop_id, page=page, page_size=page_size)
        return SyncRunListResponse(**result.model_dump())
    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}", response_model=SyncRunResponse)
def get_run(run_id: str, shop_id: str = Header(..., alias="X-Shop-Id")):
    try:
        return get_sync_run_service().get(run_id, shop_id)
    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}/progress", response_model=ProgressResponse)
def get_progress(run_id: str, shop_id: str = Header(..., alias="X-Shop-Id")):
    try:
        return get_sync_orchestrator(shop_id).get_progress(run_id)
    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}/preview")
def get_preview(run_id: str, shop_id: str = Header(..., alias="X-Shop-Id")):
    """Preview or dry-run result of an import run."""
    try:
        return get_sync_orchestrator(shop_id).get_preview(run_id)
    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}/errors")
def get_import_errors(run_id: str, shop_id: str = Header(..., alias="X-Shop-Id")):
    try:
        errors = get_sync_orchestrator(shop_id).get_import_errors(run_id)
        return {"data": errors, "total": len(errors)}
    except Exception as e:
        return handle_error(e)


@router.get("/runs/{run_id}/conflicts")
def get_conflicts(run_id: str, shop_id: str = Header(..., alias="X-Shop-Id")):
    """Conflicts held for manual resolution."""
    try:
        conflicts = get_sync_orchestrator(shop_id).get_conflicts(run_id)
        return {"data": conflicts, "total": len(conflicts)}
    except Exception as e:
        return handle_error(e)
