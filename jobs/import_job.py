"""
Import job: sheet -> catalog for one run.

options:
    preview_only  diff rows against the catalog, no writes
    dry_run       check rows and variants, no writes
"""

from typing import Any, Optional
import structlog

from models.sync import ConflictResolution
from models.sync_run import SyncType
from services.import_service import MODE_IMPORT, mode_from_options
from services.notification_service import Milestone
from jobs.base import SyncJob

logger = structlog.get_logger(__name__)


class ImportJob(SyncJob):
    name = "import"

    def handle(self) -> Optional[dict[str, Any]]:
        run = self.load_run()
        if run is None:
            return None

        mode = mode_from_options(self.options)
        logger.info("import_job_started", shop_id=self.shop_id, sync_run_id=self.run_id, mode=mode)
        self.runs.mark_as_started(self.run_id)
        self.notifier.notify(self.shop_id, self.run_id, Milestone.STARTED, sync_type=run.sync_type.value)

        conflicts = None
        try:
            connection = self.orchestrator.connections.require(self.shop_id)
            transformer = self.orchestrator.transformer()
            summary = self.orchestrator.importer(self.run_id, connection, transformer).run(mode)

            if (
                mode == MODE_IMPORT
                and summary.errors
                and run.sync_type != SyncType.CONFLICT_RESOLUTION
            ):
                policy = self.conflict_resolution or ConflictResolution.SHOPIFY_WINS.value
                conflicts = self.orchestrator.handle_conflicts(self.run_id, policy, summary)

            self.runs.mark_as_completed(self.run_id, summary.records_processed)

        except Exception as e:
            self.fail(run, e)
            raise

        self.notifier.notify(
            self.shop_id, self.run_id, Milestone.COMPLETED,
            sync_type=run.sync_type.value,
            processed=summary.records_processed,
            message=summary.message or ""
        )
        logger.info(
            "import_job_completed",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            mode=mode,
            records=summary.records_processed,
            errors=summary.error_rows
        )
        return {
            "records_processed": summary.records_processed,
            "import": summary.model_dump(),
            "conflicts": conflicts,
            "message": summary.message,
        }
