"""
Export service: catalog records -> spreadsheet rows.

Two write modes:
    export_pages  full overwrite from row 1, in chunks
    upsert        rewrite rows matched by variant id / SKU, append the rest

Chunk writes retry with 2**attempt second backoff. A chunk that still fails
is logged and skipped; later chunks take its rows so the sheet stays
contiguous.
"""

import time
from typing import Any, Callable, Iterable, Optional
import structlog

from config.settings import settings
from models.catalog import CatalogPage, CatalogRecord
from models.spreadsheet_connection import SpreadsheetConnection
from models.sync import ExportSummary
from services.cache_service import CacheStore, store_progress
from services.notification_service import Milestone
from services.transformer_service import DataTransformer
from utils.a1 import build_range, column_to_index, index_to_column, join_sheet

logger = structlog.get_logger(__name__)

KEY_FIELDS = ("variant_id", "variant_sku")


def scan_column(
    sheets,
    sheet_id: str,
    sheet_name: Optional[str],
    column: str,
    start_row: int = 2,
    page_size: int = 1000,
    last_column: Optional[str] = None
) -> tuple[dict[str, int], int]:
    """
    Read one column from start_row down.

    With last_column the read spans A..last_column, so a row with a blank
    key cell but data elsewhere still counts as used.

    Returns:
        ({trimmed value: first row number}, last non-blank row)
    """
    if last_column is None:
        first_column, key = column, 0
        last_column = column
    else:
        first_column, key = "A", column_to_index(column) - 1
        last_column = index_to_column(max(column_to_index(last_column), key + 1))

    index: dict[str, int] = {}
    last_row = start_row - 1
    page = 1
    while True:
        result = sheets.read_range(
            sheet_id,
            join_sheet(sheet_name, f"{first_column}{start_row}:{last_column}"),
            page=page,
            page_size=page_size,
        )
        for offset, cells in enumerate(result.values):
            row_number = start_row + (page - 1) * page_size + offset
            if any(str(cell).strip() for cell in cells):
                last_row = row_number
            value = str(cells[key]).strip() if len(cells) > key else ""
            if value and value not in index:
                index[value] = row_number
        if not result.has_more:
            return index, last_row
        page += 1


class SheetExporter:
    """Writes catalog records for one run into the shop's sheet."""

    def __init__(
        self,
        shop_id: str,
        run_id: str,
        *,
        sheets,
        connection: SpreadsheetConnection,
        transformer: DataTransformer,
        runs,
        cache: CacheStore,
        notifier=None,
        sync_type: Optional[str] = None,
        chunk_size: Optional[int] = None,
        write_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.shop_id = shop_id
        self.run_id = run_id
        self.sheets = sheets
        self.connection = connection
        self.transformer = transformer
        self.runs = runs
        self.cache = cache
        self.notifier = notifier
        self.sync_type = sync_type
        self.chunk_size = chunk_size or settings.sync_chunk_size
        self.write_attempts = write_attempts
        self.sleep = sleep

    @property
    def sheet_id(self) -> str:
        return self.connection.sheet_id

    def _range(self, first_row: int, last_row: int) -> str:
        return build_range(
            self.connection.sheet_name,
            "A",
            first_row,
            self.transformer.last_column(),
            last_row,
        )

    # ===================
    # FULL EXPORT
    # ===================

    def export_pages(self, pages: Iterable[CatalogPage]) -> ExportSummary:
        """
        Write every page's records in chunks of chunk_size.

        The header goes out with the first written chunk, so an empty
        catalog issues no writes at all.
        """
        summary = ExportSummary()
        buffer: list[CatalogRecord] = []
        next_row = 1
        fetched = 0

        for page in pages:
            buffer.extend(page.records)
            fetched += len(page.records)
            store_progress(self.cache, self.run_id, summary.records_processed)
            self._notify(
                Milestone.PAGE_FETCHED,
                processed=summary.records_processed,
                message=f"Fetched {fetched} products"
            )

            while len(buffer) >= self.chunk_size:
                chunk, buffer = buffer[:self.chunk_size], buffer[self.chunk_size:]
                next_row = self._export_chunk(chunk, next_row, summary)

        if buffer:
            self._export_chunk(buffer, next_row, summary)

        logger.info(
            "export_finished",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            records=summary.records_processed,
            rows=summary.rows_written,
            chunks_written=summary.chunks_written,
            chunks_failed=summary.chunks_failed
        )
        return summary

    def _export_chunk(self, records: list[CatalogRecord], next_row: int, summary: ExportSummary) -> int:
        rows = self.transformer.to_rows(
            variant for record in records for variant in record.expand_variants()
        )
        values = self.transformer.to_values(rows)
        if next_row == 1:
            values = [self.transformer.header_row()] + values

        try:
            self._with_retry(
                self.sheets.write_range,
                self.sheet_id,
                self._range(next_row, next_row + len(values) - 1),
                values,
            )
        except Exception as e:
            summary.chunks_failed += 1
            logger.error(
                "export_chunk_failed",
                shop_id=self.shop_id,
                sync_run_id=self.run_id,
                chunk_size=len(records),
                start_row=next_row,
                error=str(e)
            )
            self._notify(Milestone.CHUNK_FAILED, processed=summary.records_processed, error=str(e))
            return next_row

        summary.chunks_written += 1
        summary.records_processed += len(records)
        summary.rows_written += len(rows)
        self._record_progress(summary, f"Processed {summary.records_processed} products")
        return next_row + len(values)

    # ===================
    # UPSERT
    # ===================

    def key_column(self) -> tuple[Optional[str], Optional[str]]:
        """(field, column) used to match existing rows: variant id, else SKU."""
        for field in KEY_FIELDS:
            column = self.transformer.column_for(field)
            if column:
                return field, column
        return None, None

    def upsert(self, records: list[CatalogRecord]) -> ExportSummary:
        """
        Rewrite rows whose key is already in the sheet; append the others
        below the last used row.
        """
        summary = ExportSummary()
        variants = [variant for record in records for variant in record.expand_variants()]
        if not variants:
            return summary

        field, column = self.key_column()
        if column is None:
            logger.warning("upsert_without_key_column", shop_id=self.shop_id, sync_run_id=self.run_id)

        has_header = any(h.strip() for h in self.sheets.read_header(self.sheet_id, self.connection.sheet_name))
        existing, last_row = scan_column(
            self.sheets,
            self.sheet_id,
            self.connection.sheet_name,
            column or self.transformer.columns()[0],
            page_size=settings.sheet_read_page_size,
            last_column=self.transformer.last_column(),
        )
        if column is None:
            existing = {}

        updates: list[dict[str, Any]] = []
        appends: list[dict[str, str]] = []
        for row in self.transformer.to_rows(variants):
            key = (row.get(column) or "").strip() if column else ""
            row_number = existing.get(key) if key else None
            if row_number:
                updates.append({
                    "range": self._range(row_number, row_number),
                    "values": self.transformer.to_values([row]),
                })
            else:
                appends.append(row)

        batch_size = settings.sheet_write_batch_size
        for offset in range(0, len(updates), batch_size):
            self._with_retry(self.sheets.batch_write, self.sheet_id, updates[offset:offset + batch_size])

        if not has_header:
            self._with_retry(
                self.sheets.write_range,
                self.sheet_id,
                self._range(1, 1),
                [self.transformer.header_row()],
            )

        if appends:
            first_row = last_row + 1
            self._with_retry(
                self.sheets.write_range,
                self.sheet_id,
                self._range(first_row, first_row + len(appends) - 1),
                self.transformer.to_values(appends),
            )

        summary.records_processed = len(records)
        summary.rows_updated = len(updates)
        summary.rows_appended = len(appends)
        summary.rows_written = len(updates) + len(appends)
        summary.chunks_written = 1
        self._record_progress(summary, f"Updated {len(updates)} rows, appended {len(appends)}")

        logger.info(
            "upsert_finished",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            key_field=field,
            updated=summary.rows_updated,
            appended=summary.rows_appended
        )
        return summary

    # ===================
    # HELPERS
    # ===================

    def _with_retry(self, write: Callable[..., Any], *args) -> Any:
        for attempt in range(1, self.write_attempts + 1):
            try:
                return write(*args)
            except Exception as e:
                if attempt == self.write_attempts:
                    raise
                logger.warning(
                    "sheet_write_attempt_failed",
                    shop_id=self.shop_id,
                    attempt=attempt,
                    max_retries=self.write_attempts,
                    error=str(e)
                )
                self.sleep(2 ** attempt)

    def _record_progress(self, summary: ExportSummary, message: str) -> None:
        self.runs.update_records_processed(self.run_id, summary.records_processed)
        store_progress(self.cache, self.run_id, summary.records_processed)
        self._notify(Milestone.CHUNK_WRITTEN, processed=summary.records_processed, message=message)

    def _notify(self, milestone: Milestone, **kwargs) -> None:
        if self.notifier is None:
            return
        self.notifier.notify(self.shop_id, self.run_id, milestone, sync_type=self.sync_type, **kwargs)
