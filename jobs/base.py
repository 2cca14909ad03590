"""
Shared lifecycle for jobs bound to an existing sync run.
"""

from typing import Optional
import structlog

from models.sync_run import SyncRunResponse
from services.notification_service import Milestone
from services.sync_orchestrator import SyncOrchestrator

logger = structlog.get_logger(__name__)


class SyncJob:
    """
    One phase of a sync run.

    Subclasses implement handle(). The orchestrator supplies the
    collaborators (run store, connections, clients, notifier).
    """

    name = "sync"

    def __init__(
        self,
        shop_id: str,
        run_id: str,
        conflict_resolution: Optional[str] = None,
        options: Optional[dict] = None,
        orchestrator: Optional[SyncOrchestrator] = None
    ):
        self.shop_id = shop_id
        self.run_id = run_id
        self.conflict_resolution = conflict_resolution
        self.options = dict(options or {})
        self.orchestrator = orchestrator or SyncOrchestrator(shop_id)

    @property
    def runs(self):
        return self.orchestrator.runs

    @property
    def notifier(self):
        return self.orchestrator.notifier

    def load_run(self) -> Optional[SyncRunResponse]:
        """The job's run, or None if it is gone or belongs to another shop."""
        run = self.runs.find(self.run_id)
        if run is None or run.shop_id != self.shop_id:
            logger.warning(
                f"{self.name}_job_run_missing",
                shop_id=self.shop_id,
                sync_run_id=self.run_id
            )
            return None
        return run

    def fail(self, run: SyncRunResponse, error: Exception) -> None:
        logger.error(
            f"{self.name}_job_failed",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            error=str(error),
            error_type=type(error).__name__
        )
        self.runs.mark_as_failed(self.run_id, str(error))
        self.notifier.notify(
            self.shop_id, self.run_id, Milestone.FAILED,
            sync_type=run.sync_type.value, error=str(error)
        )

    def failed(self, error: Exception, attempts: int) -> None:
        """Called once retries are exhausted."""
        logger.error(
            f"{self.name}_job_failed_permanently",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            attempts=attempts,
            error=str(error)
        )
        message = f"Failed after {attempts} attempts: {error}"
        run = self.runs.find(self.run_id)
        if run is None:
            return
        self.runs.mark_as_failed(self.run_id, message)
        self.notifier.notify(
            self.shop_id, self.run_id, Milestone.FAILED_PERMANENTLY,
            sync_type=run.sync_type.value, error=str(error), attempts=attempts
        )
