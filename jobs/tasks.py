"""
Celery tasks wrapping the sync jobs.

Retries: up to 3 with a 60s delay. Validation, not-found and state
conflicts are not retried. When retries run out the job's failed() hook
marks the run failed permanently.
"""

from typing import Any, Optional
import structlog

from exceptions import ConflictError, NotFoundError, ValidationError
from jobs.celery_app import celery_app
from jobs.export_job import ExportJob
from jobs.import_job import ImportJob
from jobs.inventory_webhook_job import InventoryWebhookJob, WebhookDebouncer
from models.webhook import InventoryLevelWebhook
from services.cache_service import get_cache

logger = structlog.get_logger(__name__)

NON_RETRYABLE = (ValidationError, NotFoundError, ConflictError)

TASK_OPTIONS = {
    "bind": True,
    "max_retries": 3,
    "default_retry_delay": 60,
    "time_limit": 3600,
}


def _run_with_retry(task, job) -> Any:
    try:
        return job.handle()
    except NON_RETRYABLE:
        raise
    except Exception as e:
        attempts = task.request.retries + 1
        if task.request.retries >= task.max_retries:
            job.failed(e, attempts)
            raise
        logger.warning(
            "sync_task_retrying",
            task=task.name,
            shop_id=job.shop_id,
            sync_run_id=job.run_id,
            attempt=attempts,
            error=str(e)
        )
        raise task.retry(exc=e)


@celery_app.task(name="jobs.tasks.export_products", **TASK_OPTIONS)
def export_products(
    self,
    shop_id: str,
    run_id: str,
    conflict_resolution: Optional[str] = None,
    options: Optional[dict] = None
):
    """Export the catalog into the shop's sheet."""
    return _run_with_retry(self, ExportJob(shop_id, run_id, conflict_resolution, options))


@celery_app.task(name="jobs.tasks.import_products", **TASK_OPTIONS)
def import_products(
    self,
    shop_id: str,
    run_id: str,
    conflict_resolution: Optional[str] = None,
    options: Optional[dict] = None
):
    """Apply the shop's sheet to the catalog."""
    return _run_with_retry(self, ImportJob(shop_id, run_id, conflict_resolution, options))


@celery_app.task(name="jobs.tasks.process_inventory_webhook", bind=True, max_retries=3, default_retry_delay=60)
def process_inventory_webhook(self, shop_id: str, inventory_item_id: str, token: str):
    """Debounced inventory update; superseded runs exit immediately."""
    return _rewrite_inventory_row(self, get_webhook_debouncer(), shop_id, inventory_item_id, token)


def _rewrite_inventory_row(task, debouncer: WebhookDebouncer, shop_id: str, inventory_item_id: str, token: str):
    payload = debouncer.claim(shop_id, inventory_item_id, token)
    if payload is None:
        return {"superseded": True}

    job = InventoryWebhookJob(
        shop_id,
        InventoryLevelWebhook(**payload),
        run_id=debouncer.run_for(shop_id, inventory_item_id, token),
    )
    try:
        updated = job.handle()
    except NON_RETRYABLE:
        debouncer.release(shop_id, inventory_item_id, token)
        raise
    except Exception as e:
        attempts = task.request.retries + 1
        if task.request.retries >= task.max_retries:
            job.failed(e, attempts)
            debouncer.release(shop_id, inventory_item_id, token)
            raise
        if job.run_id:
            debouncer.attach_run(shop_id, inventory_item_id, token, job.run_id)
        logger.warning(
            "inventory_webhook_retrying",
            shop_id=shop_id,
            inventory_item_id=inventory_item_id,
            sync_run_id=job.run_id,
            attempt=attempts,
            error=str(e)
        )
        raise task.retry(exc=e)

    debouncer.release(shop_id, inventory_item_id, token)
    return {"updated": updated}


# ===================
# DISPATCH
# ===================

def schedule_inventory_webhook(shop_id: str, inventory_item_id: str, token: str, countdown: int) -> Any:
    return process_inventory_webhook.apply_async(args=[shop_id, inventory_item_id, token], countdown=countdown)


def get_webhook_debouncer() -> WebhookDebouncer:
    return WebhookDebouncer(get_cache(), schedule_inventory_webhook)


class CeleryDispatcher:
    """Queues run phases on the Celery broker."""

    def dispatch_export(self, shop_id: str, run_id: str, conflict_resolution: str, options: dict) -> Any:
        logger.info("export_task_queued", shop_id=shop_id, sync_run_id=run_id)
        return export_products.delay(shop_id, run_id, conflict_resolution, options)

    def dispatch_import(self, shop_id: str, run_id: str, conflict_resolution: str, options: dict) -> Any:
        logger.info("import_task_queued", shop_id=shop_id, sync_run_id=run_id)
        return import_products.delay(shop_id, run_id, conflict_resolution, options)
