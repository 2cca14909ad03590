"""
Sync progress notifications.

Every milestone (page fetched, chunk written, run completed or failed) is
stored in sync_notifications. Terminal milestones also go to Telegram when
configured. A notification failure never fails the sync.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import structlog

from config import get_supabase_client
from exceptions import TelegramError
from integrations.telegram import send_message
from integrations.telegram_messages import get_message

logger = structlog.get_logger(__name__)


class Milestone(str, Enum):
    STARTED = "started"
    PAGE_FETCHED = "page_fetched"
    CHUNK_WRITTEN = "chunk_written"
    CHUNK_FAILED = "chunk_failed"
    COMPLETED = "completed"
    FAILED = "failed"
    FAILED_PERMANENTLY = "failed_permanently"

    @property
    def is_terminal(self) -> bool:
        return self in (Milestone.COMPLETED, Milestone.FAILED, Milestone.FAILED_PERMANENTLY)


TELEGRAM_TEMPLATES = {
    Milestone.COMPLETED: "sync_completed",
    Milestone.FAILED: "sync_failed",
    Milestone.FAILED_PERMANENTLY: "sync_failed_permanently",
}


class NotificationService:
    """Database and Telegram notifications for sync runs."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "sync_notifications"

    def notify(
        self,
        shop_id: str,
        run_id: str,
        milestone: Milestone,
        *,
        sync_type: Optional[str] = None,
        processed: int = 0,
        total: Optional[int] = None,
        message: str = "",
        error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Record a milestone. Returns False if any channel failed.
        """
        percentage = int(processed / total * 100) if total else 0
        delivered = True

        try:
            (
                self.db.table(self.table)
                .insert({
                    "shop_id": shop_id,
                    "sync_run_id": run_id,
                    "milestone": milestone.value,
                    "sync_type": sync_type,
                    "processed": processed,
                    "total": total,
                    "percentage": min(percentage, 100),
                    "message": message or error or "",
                    "created_at": datetime.now(timezone.utc).isoformat(),
                })
                .execute()
            )
        except Exception as e:
            delivered = False
            logger.warning(
                "notification_store_failed",
                sync_run_id=run_id,
                milestone=milestone.value,
                error=str(e)
            )
            # Don't fail the sync if the notification could not be stored

        template = TELEGRAM_TEMPLATES.get(milestone)
        if template:
            try:
                send_message(get_message(
                    template,
                    shop=shop_id,
                    sync_type=sync_type or "",
                    records=processed,
                    run_id=run_id,
                    error=error or message,
                    attempts=attempts or 0,
                ))
            except TelegramError as e:
                delivered = False
                logger.warning(
                    "telegram_send_failed",
                    sync_run_id=run_id,
                    milestone=milestone.value,
                    error=str(e)
                )

        return delivered


# Singleton instance
_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get or create NotificationService instance."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
