"""
Sync run service.

Owns the sync_runs table. Status only moves through the mark_* methods:
pending -> processing -> completed | failed.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional
import structlog

from config import get_supabase_client
from models.base import PaginatedResponse
from models.sync_run import SyncRunResponse, SyncRunStatus, SyncType
from exceptions import DatabaseError, SyncRunNotFoundError

logger = structlog.get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncRunService:
    """
    Sync run persistence.

    Every write re-reads the row so callers always hold the stored state.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "sync_runs"

    def create(self, shop_id: str, sync_type: SyncType) -> SyncRunResponse:
        """
        Create a pending run. One run per invocation; runs are never reused.

        Raises:
            DatabaseError: If insert fails
        """
        try:
            result = (
                self.db.table(self.table)
                .insert({
                    "shop_id": shop_id,
                    "sync_type": SyncType(sync_type).value,
                    "status": SyncRunStatus.PENDING.value,
                    "records_processed": 0,
                    "created_at": _now(),
                })
                .execute()
            )
            run = SyncRunResponse(**result.data[0])
            logger.info("sync_run_created", sync_run_id=run.id, shop_id=shop_id, sync_type=run.sync_type.value)
            return run

        except Exception as e:
            logger.error("create_sync_run_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("insert", str(e))

    def get(self, run_id: str, shop_id: Optional[str] = None) -> SyncRunResponse:
        """
        Get a run, optionally scoped to a shop.

        Raises:
            SyncRunNotFoundError: If missing or owned by another shop
        """
        try:
            query = self.db.table(self.table).select("*").eq("id", run_id)
            if shop_id is not None:
                query = query.eq("shop_id", shop_id)
            result = query.execute()
        except Exception as e:
            logger.error("get_sync_run_failed", sync_run_id=run_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SyncRunNotFoundError(run_id)
        return SyncRunResponse(**result.data[0])

    def find(self, run_id: str) -> Optional[SyncRunResponse]:
        try:
            return self.get(run_id)
        except SyncRunNotFoundError:
            return None

    def list_runs(self, shop_id: str, page: int = 1, page_size: int = 20) -> PaginatedResponse:
        """Runs for a shop, newest first."""
        try:
            start = (page - 1) * page_size
            result = (
                self.db.table(self.table)
                .select("*", count="exact")
                .eq("shop_id", shop_id)
                .order("created_at", desc=True)
                .range(start, start + page_size - 1)
                .execute()
            )
            runs = [SyncRunResponse(**row) for row in result.data]
            return PaginatedResponse.create(
                data=runs,
                total=result.count or len(runs),
                page=page,
                page_size=page_size,
            )
        except Exception as e:
            logger.error("list_sync_runs_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("select", str(e))

    def last_completed_at(self, shop_id: str, exclude_type: str = SyncType.WEBHOOK.value) -> Optional[datetime]:
        """completed_at of the newest completed run, webhook runs excluded."""
        try:
            result = (
                self.db.table(self.table)
                .select("completed_at")
                .eq("shop_id", shop_id)
                .eq("status", SyncRunStatus.COMPLETED.value)
                .neq("sync_type", exclude_type)
                .order("completed_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("last_completed_run_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data or not result.data[0].get("completed_at"):
            return None
        value = result.data[0]["completed_at"]
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))

    # ===================
    # STATE TRANSITIONS
    # ===================

    def _update(self, run_id: str, data: dict[str, Any]) -> SyncRunResponse:
        try:
            result = (
                self.db.table(self.table)
                .update(data)
                .eq("id", run_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_sync_run_failed", sync_run_id=run_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise SyncRunNotFoundError(run_id)
        return SyncRunResponse(**result.data[0])

    def mark_as_started(self, run_id: str) -> SyncRunResponse:
        run = self._update(run_id, {
            "status": SyncRunStatus.PROCESSING.value,
            "started_at": _now(),
        })
        logger.info("sync_run_started", sync_run_id=run_id)
        return run

    def update_records_processed(self, run_id: str, count: int) -> SyncRunResponse:
        return self._update(run_id, {"records_processed": max(0, count)})

    def mark_as_completed(self, run_id: str, records_processed: int = 0) -> SyncRunResponse:
        """Idempotent: a second call keeps completed and its count wins."""
        run = self._update(run_id, {
            "status": SyncRunStatus.COMPLETED.value,
            "completed_at": _now(),
            "records_processed": max(0, records_processed),
        })
        logger.info("sync_run_completed", sync_run_id=run_id, records_processed=records_processed)
        return run

    def mark_as_failed(self, run_id: str, error_message: str) -> SyncRunResponse:
        run = self._update(run_id, {
            "status": SyncRunStatus.FAILED.value,
            "completed_at": _now(),
            "error_message": error_message,
        })
        logger.warning("sync_run_failed", sync_run_id=run_id, error=error_message)
        return run

    def audit_logger(self, run_id: str, shop_id: str) -> Callable[..., None]:
        """Callback that records catalog API operations against a run."""
        bound = logger.bind(sync_run_id=run_id, shop_id=shop_id)

        def audit(operation: str, **details: Any) -> None:
            bound.info("shopify_api_operation", operation=operation, **details)

        return audit


# Singleton instance
_sync_run_service: Optional[SyncRunService] = None


def get_sync_run_service() -> SyncRunService:
    """Get or create SyncRunService instance."""
    global _sync_run_service
    if _sync_run_service is None:
        _sync_run_service = SyncRunService()
    return _sync_run_service
