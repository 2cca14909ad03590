"""
Inventory webhook handling.

Shopify sends inventory_levels/update in bursts. WebhookDebouncer keeps one
pending payload per (shop, inventory item) and schedules a delayed run;
a newer event replaces the payload and the token, so only the latest
scheduled run finds work to do.
"""

from datetime import timedelta
from typing import Any, Callable, Optional
from uuid import uuid4
import structlog

from config.settings import settings
from models.sync_run import SyncType
from models.webhook import InventoryLevelWebhook
from services.cache_service import CacheStore, debounce_key
from services.export_service import scan_column
from services.notification_service import Milestone
from services.sync_orchestrator import SyncOrchestrator
from utils.a1 import build_range

logger = structlog.get_logger(__name__)

# Outlives the window plus task retries
PENDING_TTL = timedelta(hours=1)

# schedule(shop_id, inventory_item_id, token, countdown)
ScheduleFn = Callable[[str, str, str, int], Any]


class WebhookDebouncer:
    """Trailing-window debounce keyed by shop and inventory item."""

    def __init__(self, cache: CacheStore, schedule: ScheduleFn, window: Optional[int] = None):
        self.cache = cache
        self.schedule = schedule
        self.window = settings.webhook_debounce_seconds if window is None else window

    def submit(self, shop_id: str, event: InventoryLevelWebhook) -> bool:
        """
        Store the event and schedule a run after the window.

        Returns:
            True if a pending event for the same item was replaced
        """
        item_id = event.inventory_item_gid
        key = debounce_key(shop_id, item_id)
        pending = self.cache.get(key) is not None
        token = uuid4().hex

        self.cache.set(
            key,
            {"payload": event.model_dump(), "token": token},
            PENDING_TTL + timedelta(seconds=self.window),
        )
        self.schedule(shop_id, item_id, token, self.window)

        logger.info(
            "inventory_webhook_debounced" if pending else "inventory_webhook_scheduled",
            shop_id=shop_id,
            inventory_item_id=item_id,
            window=self.window
        )
        return pending

    def claim(self, shop_id: str, inventory_item_id: str, token: str) -> Optional[dict]:
        """Payload for the latest event, or None if this run was superseded."""
        key = debounce_key(shop_id, inventory_item_id)
        entry = self.cache.get(key)
        if not entry or entry.get("token") != token:
            logger.debug("inventory_webhook_superseded", shop_id=shop_id, inventory_item_id=inventory_item_id)
            return None
        return entry["payload"]

    def release(self, shop_id: str, inventory_item_id: str, token: str) -> None:
        """Drop the pending entry once the run holding token has finished."""
        key = debounce_key(shop_id, inventory_item_id)
        entry = self.cache.get(key)
        if entry and entry.get("token") == token:
            self.cache.delete(key)

    def attach_run(self, shop_id: str, inventory_item_id: str, token: str, run_id: str) -> None:
        """Remember the sync run created for token so retries continue it."""
        key = debounce_key(shop_id, inventory_item_id)
        entry = self.cache.get(key)
        if entry and entry.get("token") == token:
            self.cache.set(key, {**entry, "run_id": run_id}, PENDING_TTL)

    def run_for(self, shop_id: str, inventory_item_id: str, token: str) -> Optional[str]:
        entry = self.cache.get(debounce_key(shop_id, inventory_item_id))
        if not entry or entry.get("token") != token:
            return None
        return entry.get("run_id")


class InventoryWebhookJob:
    """Rewrite the sheet row of one variant after an inventory change."""

    def __init__(
        self,
        shop_id: str,
        event: InventoryLevelWebhook,
        orchestrator: Optional[SyncOrchestrator] = None,
        run_id: Optional[str] = None
    ):
        self.shop_id = shop_id
        self.event = event
        self.run_id = run_id
        self.orchestrator = orchestrator or SyncOrchestrator(shop_id)

    def handle(self) -> bool:
        """
        Continues run_id when it is set (a task retry), otherwise creates
        a webhook run.

        Returns:
            True if a row was rewritten
        """
        connection = self.orchestrator.connections.get(self.shop_id)
        if connection is None or not connection.is_ready:
            logger.info("inventory_webhook_skipped", shop_id=self.shop_id, reason="not_connected")
            return False

        runs = self.orchestrator.runs
        run = runs.find(self.run_id) if self.run_id else None
        if run is None or run.shop_id != self.shop_id:
            run = runs.create(self.shop_id, SyncType.WEBHOOK)
        self.run_id = run.id
        runs.mark_as_started(run.id)

        try:
            updated = self._update_row(run.id, connection)
        except Exception as e:
            logger.error(
                "inventory_webhook_failed",
                shop_id=self.shop_id,
                sync_run_id=run.id,
                inventory_item_id=self.event.inventory_item_gid,
                error=str(e)
            )
            runs.mark_as_failed(run.id, str(e))
            raise

        runs.mark_as_completed(run.id, 1 if updated else 0)
        return updated

    def failed(self, error: Exception, attempts: int) -> None:
        """Called once task retries are exhausted."""
        logger.error(
            "inventory_webhook_failed_permanently",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            inventory_item_id=self.event.inventory_item_gid,
            attempts=attempts,
            error=str(error)
        )
        if self.run_id is None:
            return
        self.orchestrator.runs.mark_as_failed(self.run_id, f"Failed after {attempts} attempts: {error}")
        self.orchestrator.notifier.notify(
            self.shop_id, self.run_id, Milestone.FAILED_PERMANENTLY,
            sync_type=SyncType.WEBHOOK.value, error=str(error), attempts=attempts
        )

    def _update_row(self, run_id: str, connection) -> bool:
        item_id = self.event.inventory_item_gid
        record = self.orchestrator.catalog_for(run_id).fetch_variant_by_inventory_item(item_id)
        if record is None:
            logger.warning("inventory_webhook_variant_missing", shop_id=self.shop_id, inventory_item_id=item_id)
            return False
        if self.event.available is not None:
            record = record.model_copy(update={"inventory_quantity": self.event.available})

        transformer = self.orchestrator.transformer()
        sku_column = transformer.column_for("variant_sku")
        if not sku_column:
            logger.warning("inventory_webhook_no_sku_column", shop_id=self.shop_id)
            return False

        sku = (record.sku or "").strip()
        if not sku:
            logger.warning("inventory_webhook_variant_without_sku", shop_id=self.shop_id, inventory_item_id=item_id)
            return False

        sheets = self.orchestrator.sheets_for(connection)
        index, _ = scan_column(
            sheets,
            connection.sheet_id,
            connection.sheet_name,
            sku_column,
            page_size=settings.sheet_read_page_size,
        )
        row_number = index.get(sku)
        if not row_number:
            logger.info("inventory_webhook_row_not_found", shop_id=self.shop_id, sku=sku)
            return False

        values = transformer.to_values(transformer.to_rows(record.expand_variants()))
        sheets.write_range(
            connection.sheet_id,
            build_range(connection.sheet_name, "A", row_number, transformer.last_column(), row_number),
            values[:1],
        )
        logger.info(
            "inventory_webhook_row_updated",
            shop_id=self.shop_id,
            sku=sku,
            row=row_number,
            available=self.event.available
        )
        return True
