"""
Celery application for background sync work.

Start a worker with:
    celery -A jobs.celery_app worker --loglevel=info
"""

from celery import Celery

from config import configure_logging, settings


def make_celery(app_name: str = "sheets_sync") -> Celery:
    """Create and configure the Celery instance."""
    celery = Celery(
        app_name,
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["jobs.tasks"],
    )

    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        result_expires=3600,
        task_acks_late=True,  # Acknowledge after completion
        worker_prefetch_multiplier=1,
        task_time_limit=3600,
        task_routes={
            "jobs.tasks.export_products": {"queue": "sync"},
            "jobs.tasks.import_products": {"queue": "sync"},
            "jobs.tasks.process_inventory_webhook": {"queue": "webhooks"},
        },
    )
    return celery


configure_logging()

celery_app = make_celery()
