"""
Sync orchestrator.

Entry point for every sync: validates the request, creates the run, and
either queues jobs or runs the strategy inline.

Strategies:
    full         export the whole catalog, then import the sheet back
    incremental  export products updated since the last completed run
    selective    export the given product / variant ids

Any error while a strategy runs marks the run failed and is re-raised.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol
import structlog

from config.settings import settings
from exceptions import (
    InvalidConflictResolutionError,
    InvalidStrategyError,
    MappingsNotConfiguredError,
    PreviewNotFoundError,
    ValidationError,
)
from integrations.sheets_client import SheetsClient
from integrations.shopify_client import ShopifyCatalogClient
from models.spreadsheet_connection import SpreadsheetConnection
from models.sync import ConflictResolution, ImportSummary, SyncStrategy
from models.sync_run import ProgressResponse, SyncRunResponse, SyncRunStatus, SyncType
from services.cache_service import (
    CONFLICTS_TTL,
    CacheStore,
    conflicts_key,
    get_cache,
    import_errors_key,
    load_progress,
    preview_key,
    store_progress,
)
from services.connection_service import ConnectionService, get_connection_service
from services.export_service import SheetExporter
from services.import_service import MODE_IMPORT, SheetImporter, mode_from_options
from services.notification_service import Milestone, NotificationService, get_notification_service
from services.shop_service import get_shop_service
from services.sync_run_service import SyncRunService, get_sync_run_service
from services.transformer_service import DataTransformer

logger = structlog.get_logger(__name__)

VALID_STRATEGIES = [s.value for s in SyncStrategy]
VALID_CONFLICT_RESOLUTIONS = [c.value for c in ConflictResolution]


class Dispatcher(Protocol):
    """Queues the export / import phases of a run."""

    def dispatch_export(self, shop_id: str, run_id: str, conflict_resolution: str, options: dict) -> Any: ...

    def dispatch_import(self, shop_id: str, run_id: str, conflict_resolution: str, options: dict) -> Any: ...


def _default_dispatcher() -> Dispatcher:
    from jobs.tasks import CeleryDispatcher

    return CeleryDispatcher()


def validate_request(
    strategy: str,
    conflict_resolution: Optional[str],
    options: Optional[dict] = None
) -> tuple[SyncStrategy, ConflictResolution]:
    """
    Raises:
        InvalidStrategyError: Unknown strategy
        InvalidConflictResolutionError: Unknown conflict policy
        ValidationError: Selective sync without ids
    """
    if strategy not in VALID_STRATEGIES:
        raise InvalidStrategyError(strategy, VALID_STRATEGIES)
    policy = conflict_resolution or ConflictResolution.SHOPIFY_WINS.value
    if policy not in VALID_CONFLICT_RESOLUTIONS:
        raise InvalidConflictResolutionError(policy, VALID_CONFLICT_RESOLUTIONS)

    if strategy == SyncStrategy.SELECTIVE.value:
        options = options or {}
        if not options.get("product_ids") and not options.get("variant_ids"):
            raise ValidationError(
                "No products or variants specified for selective sync",
                code="EMPTY_SELECTION"
            )
    return SyncStrategy(strategy), ConflictResolution(policy)


class SyncOrchestrator:
    """
    Sync entry point for one shop.

    Collaborators default to the shared singletons; tests inject fakes.
    The catalog client and transformer are created per run unless given,
    so each run audits to its own id and holds its own mapping snapshot.
    """

    def __init__(
        self,
        shop_id: str,
        *,
        runs: Optional[SyncRunService] = None,
        catalog: Optional[ShopifyCatalogClient] = None,
        sheets_factory: Optional[Callable[[SpreadsheetConnection], Any]] = None,
        transformer: Optional[DataTransformer] = None,
        cache: Optional[CacheStore] = None,
        dispatcher: Optional[Dispatcher] = None,
        connections: Optional[ConnectionService] = None,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.shop_id = shop_id
        self.runs = runs or get_sync_run_service()
        self.cache = cache or get_cache()
        self.connections = connections or get_connection_service()
        self.notifier = notifier or get_notification_service()
        self._catalog = catalog
        self._sheets_factory = sheets_factory
        self._transformer = transformer
        self._dispatcher = dispatcher
        self.clock = clock

    # ===================
    # COLLABORATORS
    # ===================

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            self._dispatcher = _default_dispatcher()
        return self._dispatcher

    def catalog_for(self, run_id: str):
        if self._catalog is not None:
            return self._catalog
        audit = self.runs.audit_logger(run_id, self.shop_id)
        return get_shop_service().catalog_client(self.shop_id, audit=audit)

    def sheets_for(self, connection: SpreadsheetConnection):
        if self._sheets_factory is not None:
            return self._sheets_factory(connection)
        return SheetsClient(connection, token_store=self.connections, cache=self.cache)

    def transformer(self) -> DataTransformer:
        transformer = self._transformer or DataTransformer.for_shop(self.shop_id)
        if not transformer.mappings:
            raise MappingsNotConfiguredError(self.shop_id)
        return transformer

    def exporter(self, run_id: str, connection: SpreadsheetConnection, transformer: DataTransformer,
                 sync_type: Optional[str] = None, **kwargs) -> SheetExporter:
        return SheetExporter(
            self.shop_id,
            run_id,
            sheets=self.sheets_for(connection),
            connection=connection,
            transformer=transformer,
            runs=self.runs,
            cache=self.cache,
            notifier=self.notifier,
            sync_type=sync_type,
            **kwargs,
        )

    def importer(self, run_id: str, connection: SpreadsheetConnection, transformer: DataTransformer,
                 catalog=None) -> SheetImporter:
        return SheetImporter(
            self.shop_id,
            run_id,
            sheets=self.sheets_for(connection),
            connection=connection,
            transformer=transformer,
            catalog=catalog or self.catalog_for(run_id),
            cache=self.cache,
        )

    # ===================
    # START
    # ===================

    def start_sync(
        self,
        strategy: str,
        async_: bool = True,
        conflict_resolution: Optional[str] = None,
        options: Optional[dict] = None
    ) -> dict[str, Any]:
        """
        Validate, create the run, then queue it or run it inline.

        Raises:
            InvalidStrategyError / InvalidConflictResolutionError: Bad enums
            SheetsNotConnectedError: No usable sheet connection
            MappingsNotConfiguredError: No active field mappings
        """
        options = dict(options or {})
        sync_strategy, policy = validate_request(strategy, conflict_resolution, options)
        self.connections.require(self.shop_id)
        transformer = self.transformer()

        run = self.runs.create(self.shop_id, SyncType(sync_strategy.value))
        logger.info(
            "sync_requested",
            shop_id=self.shop_id,
            sync_run_id=run.id,
            strategy=sync_strategy.value,
            conflict_resolution=policy.value,
            async_=async_
        )

        if async_:
            self._queue(run, sync_strategy, policy, options)
            return {
                "success": True,
                "sync_run_id": run.id,
                "status": "queued",
                "strategy": sync_strategy.value,
                "message": "Sync operation queued successfully",
            }

        result = self.execute(run.id, sync_strategy.value, policy.value, options, transformer=transformer)
        return {
            "success": True,
            "sync_run_id": run.id,
            "status": SyncRunStatus.COMPLETED.value,
            "strategy": sync_strategy.value,
            "message": result.get("message"),
            "result": result,
        }

    def _queue(self, run: SyncRunResponse, strategy: SyncStrategy, policy: ConflictResolution, options: dict) -> None:
        if strategy == SyncStrategy.FULL:
            # Independent phases on the same run; no ordering between them.
            self.dispatcher.dispatch_export(self.shop_id, run.id, policy.value, {**options, "strategy": strategy.value})
            self.dispatcher.dispatch_import(self.shop_id, run.id, policy.value, options)
        else:
            self.dispatcher.dispatch_export(self.shop_id, run.id, policy.value, {**options, "strategy": strategy.value})

    # ===================
    # EXECUTE
    # ===================

    def execute(
        self,
        run_id: str,
        strategy: str,
        conflict_resolution: Optional[str] = None,
        options: Optional[dict] = None,
        transformer: Optional[DataTransformer] = None
    ) -> dict[str, Any]:
        """Run a strategy inline against an existing run."""
        options = options or {}
        sync_strategy, policy = validate_request(strategy, conflict_resolution, options)
        run = self.runs.mark_as_started(run_id)
        self.notifier.notify(self.shop_id, run_id, Milestone.STARTED, sync_type=run.sync_type.value)

        try:
            connection = self.connections.require(self.shop_id)
            transformer = transformer or self.transformer()

            if sync_strategy == SyncStrategy.FULL:
                result = self.full_sync(run_id, connection, transformer, policy)
            elif sync_strategy == SyncStrategy.INCREMENTAL:
                result = self.incremental_sync(run_id, connection, transformer)
            else:
                result = self.selective_sync(run_id, connection, transformer, options)

        except Exception as e:
            logger.error(
                "sync_failed",
                shop_id=self.shop_id,
                sync_run_id=run_id,
                strategy=strategy,
                error=str(e)
            )
            self.runs.mark_as_failed(run_id, str(e))
            self.notifier.notify(
                self.shop_id, run_id, Milestone.FAILED,
                sync_type=run.sync_type.value, error=str(e)
            )
            raise

        self.connections.touch_last_synced(self.shop_id)
        self.notifier.notify(
            self.shop_id, run_id, Milestone.COMPLETED,
            sync_type=run.sync_type.value,
            processed=result["records_processed"],
            message=result.get("message", "")
        )
        return result

    def full_sync(
        self,
        run_id: str,
        connection: SpreadsheetConnection,
        transformer: DataTransformer,
        policy: ConflictResolution
    ) -> dict[str, Any]:
        catalog = self.catalog_for(run_id)
        exported = self.exporter(run_id, connection, transformer, SyncType.FULL_EXPORT.value).export_pages(
            catalog.iter_pages()
        )
        imported = self.importer(run_id, connection, transformer, catalog).run(MODE_IMPORT)

        conflicts = None
        if imported.errors:
            conflicts = self.handle_conflicts(run_id, policy.value, imported)

        total = exported.records_processed + imported.records_processed
        self.runs.mark_as_completed(run_id, total)
        store_progress(self.cache, run_id, total, total)
        return {
            "records_processed": total,
            "export": exported.model_dump(),
            "import": imported.model_dump(),
            "conflicts": conflicts,
            "message": f"Full sync completed: {exported.records_processed} exported, "
                       f"{imported.records_processed} updated",
        }

    def incremental_sync(
        self,
        run_id: str,
        connection: SpreadsheetConnection,
        transformer: DataTransformer
    ) -> dict[str, Any]:
        since = self.runs.last_completed_at(self.shop_id)
        if since is None:
            since = self.clock() - timedelta(days=settings.incremental_lookback_days)

        records = list(self.catalog_for(run_id).fetch_all_since(since))
        logger.info(
            "incremental_changes_found",
            shop_id=self.shop_id,
            sync_run_id=run_id,
            since=since.isoformat(),
            products=len(records)
        )
        if not records:
            self.runs.mark_as_completed(run_id, 0)
            return {"records_processed": 0, "message": "No changes detected since last sync"}

        summary = self.exporter(run_id, connection, transformer, SyncType.INCREMENTAL.value).upsert(records)
        self.runs.mark_as_completed(run_id, summary.records_processed)
        return {
            "records_processed": summary.records_processed,
            "since": since.isoformat(),
            "export": summary.model_dump(),
            "message": f"Incremental sync completed: {summary.records_processed} products",
        }

    def selective_sync(
        self,
        run_id: str,
        connection: SpreadsheetConnection,
        transformer: DataTransformer,
        options: dict
    ) -> dict[str, Any]:
        product_ids = list(options.get("product_ids") or [])
        variant_ids = list(options.get("variant_ids") or [])
        if not product_ids and not variant_ids:
            raise ValidationError(
                "No products or variants specified for selective sync",
                code="EMPTY_SELECTION"
            )

        catalog = self.catalog_for(run_id)
        records = [r for r in (catalog.fetch_product(pid) for pid in product_ids) if r is not None]
        records += [r for r in (catalog.fetch_variant(vid) for vid in variant_ids) if r is not None]

        if not records:
            self.runs.mark_as_completed(run_id, 0)
            return {"records_processed": 0, "message": "No products found"}

        summary = self.exporter(run_id, connection, transformer, SyncType.SELECTIVE.value).upsert(records)
        self.runs.mark_as_completed(run_id, summary.records_processed)
        return {
            "records_processed": summary.records_processed,
            "export": summary.model_dump(),
            "message": f"Selective sync completed: {summary.records_processed} records",
        }

    # ===================
    # CONFLICTS
    # ===================

    def handle_conflicts(self, run_id: str, policy: str, imported: ImportSummary) -> dict[str, Any]:
        """Apply the conflict policy to the import phase's per-item errors."""
        conflicts = imported.errors
        logger.info(
            "sync_conflicts_found",
            shop_id=self.shop_id,
            sync_run_id=run_id,
            policy=policy,
            conflicts=len(conflicts)
        )

        if policy == ConflictResolution.SHEETS_WINS.value:
            retry_run = self.runs.create(self.shop_id, SyncType.CONFLICT_RESOLUTION)
            self.dispatcher.dispatch_import(self.shop_id, retry_run.id, policy, {})
            return {"policy": policy, "action": "reimport_queued", "sync_run_id": retry_run.id}

        if policy == ConflictResolution.MANUAL.value:
            self.cache.set(conflicts_key(run_id), conflicts, CONFLICTS_TTL)
            return {"policy": policy, "action": "stored", "count": len(conflicts)}

        if policy == ConflictResolution.MERGE.value:
            # TODO: field-level merge of sheet and catalog values
            logger.info("sync_conflicts_merge_pending", shop_id=self.shop_id, sync_run_id=run_id,
                        conflicts=len(conflicts))
            return {"policy": policy, "action": "logged", "count": len(conflicts)}

        return {"policy": policy, "action": "none", "count": len(conflicts)}

    # ===================
    # PROGRESS / RESULTS
    # ===================

    def update_progress(self, run_id: str, processed: int, total: Optional[int] = None) -> None:
        store_progress(self.cache, run_id, processed, total, self.clock())

    def get_progress(self, run_id: str) -> ProgressResponse:
        """
        Snapshot merged with the authoritative run row.

        Raises:
            SyncRunNotFoundError: Unknown run or another shop's run
        """
        run = self.runs.get(run_id, self.shop_id)
        snapshot = load_progress(self.cache, run_id)

        processed = run.records_processed
        total = None
        percentage = 100 if run.status == SyncRunStatus.COMPLETED else 0
        if snapshot is not None and not run.status.is_terminal:
            processed = snapshot.records_processed
            total = snapshot.total_records
            percentage = snapshot.percentage
        elif snapshot is not None:
            total = snapshot.total_records

        return ProgressResponse(
            sync_run_id=run.id,
            status=run.status,
            records_processed=processed,
            total_records=total,
            percentage=percentage,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error_message=run.error_message,
        )

    def get_preview(self, run_id: str) -> dict[str, Any]:
        """
        Raises:
            SyncRunNotFoundError: Unknown run or another shop's run
            PreviewNotFoundError: Nothing cached for the run
        """
        self.runs.get(run_id, self.shop_id)
        data = self.cache.get(preview_key(run_id))
        if data is None:
            raise PreviewNotFoundError(run_id)
        return data

    def get_import_errors(self, run_id: str) -> list[dict[str, Any]]:
        self.runs.get(run_id, self.shop_id)
        return self.cache.get(import_errors_key(run_id)) or []

    def get_conflicts(self, run_id: str) -> list[dict[str, Any]]:
        self.runs.get(run_id, self.shop_id)
        return self.cache.get(conflicts_key(run_id)) or []


def get_sync_orchestrator(shop_id: str) -> SyncOrchestrator:
    """Orchestrator for a shop wired to the default services."""
    return SyncOrchestrator(shop_id)
