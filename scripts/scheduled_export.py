"""
Scheduled export.

Queues an export for one shop, or for every shop with a connected sheet.
Meant to be run by a daily scheduler:

    python scripts/scheduled_export.py                       # all shops, incremental
    python scripts/scheduled_export.py --shop-id <id>        # one shop
    python scripts/scheduled_export.py --strategy full

A failing shop is logged and skipped; the exit code is 1 if any shop failed.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
from typing import Callable, Optional

import structlog

from config import configure_logging
from models.sync import ConflictResolution, SyncStrategy
from services.connection_service import get_connection_service
from services.sync_orchestrator import SyncOrchestrator, get_sync_orchestrator

logger = structlog.get_logger(__name__)


def run_scheduled_export(
    shop_ids: Optional[list[str]] = None,
    strategy: str = SyncStrategy.INCREMENTAL.value,
    orchestrator_factory: Callable[[str], SyncOrchestrator] = get_sync_orchestrator,
    connections=None
) -> dict:
    """
    Queue one async run per shop.

    Returns:
        {"queued": {shop_id: run_id}, "failed": {shop_id: error}}
    """
    if shop_ids is None:
        connections = connections or get_connection_service()
        shop_ids = [c.shop_id for c in connections.list_ready()]

    queued: dict[str, str] = {}
    failed: dict[str, str] = {}
    for shop_id in shop_ids:
        try:
            result = orchestrator_factory(shop_id).start_sync(
                strategy,
                async_=True,
                conflict_resolution=ConflictResolution.SHOPIFY_WINS.value,
            )
            queued[shop_id] = result["sync_run_id"]
            logger.info("scheduled_export_queued", shop_id=shop_id, sync_run_id=result["sync_run_id"])
        except Exception as e:
            failed[shop_id] = str(e)
            logger.error("scheduled_export_failed", shop_id=shop_id, error=str(e), error_type=type(e).__name__)

    logger.info("scheduled_export_finished", strategy=strategy, queued=len(queued), failed=len(failed))
    return {"queued": queued, "failed": failed}


def main():
    parser = argparse.ArgumentParser(
        description="Queue catalog exports to Google Sheets."
    )
    parser.add_argument(
        "--shop-id",
        default=None,
        help="Export a single shop (default: every shop with a connected sheet)"
    )
    parser.add_argument(
        "--strategy",
        default=SyncStrategy.INCREMENTAL.value,
        choices=[s.value for s in SyncStrategy if s != SyncStrategy.SELECTIVE],
        help="Sync strategy (default: incremental)"
    )
    args = parser.parse_args()

    configure_logging()
    result = run_scheduled_export(
        shop_ids=[args.shop_id] if args.shop_id else None,
        strategy=args.strategy,
    )
    sys.exit(1 if result["failed"] else 0)


if __name__ == "__main__":
    main()
