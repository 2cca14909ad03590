"""
Export job: catalog -> sheet for one run.

Full exports page through the catalog and overwrite the sheet in chunks.
Incremental and selective runs go through the orchestrator's upsert path.
"""

from typing import Any, Optional
import structlog

from config.settings import settings
from models.sync import SyncStrategy
from services.notification_service import Milestone
from jobs.base import SyncJob

logger = structlog.get_logger(__name__)


class ExportJob(SyncJob):
    name = "export"

    def handle(self) -> Optional[dict[str, Any]]:
        run = self.load_run()
        if run is None:
            return None

        strategy = self.options.get("strategy", SyncStrategy.FULL.value)
        if strategy in (SyncStrategy.INCREMENTAL.value, SyncStrategy.SELECTIVE.value):
            return self.orchestrator.execute(self.run_id, strategy, self.conflict_resolution, self.options)

        logger.info("export_job_started", shop_id=self.shop_id, sync_run_id=self.run_id)
        self.runs.mark_as_started(self.run_id)
        self.notifier.notify(self.shop_id, self.run_id, Milestone.STARTED, sync_type=run.sync_type.value)

        try:
            connections = self.orchestrator.connections
            connection = connections.require(self.shop_id)
            transformer = self.orchestrator.transformer()
            catalog = self.orchestrator.catalog_for(self.run_id)

            exporter = self.orchestrator.exporter(
                self.run_id,
                connection,
                transformer,
                sync_type=run.sync_type.value,
                chunk_size=self.options.get("chunk_size"),
            )
            summary = exporter.export_pages(catalog.iter_pages(limit=settings.sync_page_size))

            connections.touch_last_synced(self.shop_id)
            self.runs.mark_as_completed(self.run_id, summary.records_processed)

        except Exception as e:
            self.fail(run, e)
            raise

        message = f"Exported {summary.records_processed} products"
        if summary.chunks_failed:
            message += f" ({summary.chunks_failed} chunks failed)"
        self.notifier.notify(
            self.shop_id, self.run_id, Milestone.COMPLETED,
            sync_type=run.sync_type.value,
            processed=summary.records_processed,
            message=message
        )
        logger.info(
            "export_job_completed",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            records=summary.records_processed
        )
        return {"records_processed": summary.records_processed, "export": summary.model_dump(), "message": message}
