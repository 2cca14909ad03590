"""
Background sync jobs.

Job classes carry the logic and run without a broker; jobs.tasks wraps
them as Celery tasks.
"""

from jobs.export_job import ExportJob
from jobs.import_job import ImportJob
from jobs.inventory_webhook_job import InventoryWebhookJob, WebhookDebouncer

__all__ = [
    "ExportJob",
    "ImportJob",
    "InventoryWebhookJob",
    "WebhookDebouncer",
]
