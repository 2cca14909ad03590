"""
Import service: spreadsheet rows -> catalog updates.

Modes:
    preview   diff each row against the current variant, no writes
    dry_run   check the variant exists and values are sane, no writes
    import    bulk inventory adjustment + all-or-nothing variant update

Preview and dry-run results are cached under import_preview:{run_id};
per-item import errors under import_errors:{run_id}. Both live 7 days.
"""

from typing import Any, Optional
import structlog

from config.settings import settings
from exceptions import AppError, BulkUpdateRolledBackError, RowValidationError
from models.catalog import CatalogRecord
from models.spreadsheet_connection import SpreadsheetConnection
from models.sync import ImportSummary, PreviewChange, PreviewRow
from services.cache_service import (
    CacheStore,
    IMPORT_ERRORS_TTL,
    PREVIEW_TTL,
    import_errors_key,
    preview_key,
)
from services.transformer_service import DataTransformer
from utils.a1 import join_sheet

logger = structlog.get_logger(__name__)

MODE_IMPORT = "import"
MODE_PREVIEW = "preview"
MODE_DRY_RUN = "dry_run"

FIRST_DATA_ROW = 2

# Canonical field -> variant update key
VARIANT_UPDATE_FIELDS = {
    "variant_price": "price",
    "variant_compare_at_price": "compare_at_price",
    "variant_cost": "cost",
    "variant_sku": "sku",
    "variant_barcode": "barcode",
    "variant_weight": "weight",
    "variant_weight_unit": "weight_unit",
    "variant_taxable": "taxable",
    "variant_tax_code": "tax_code",
}


def mode_from_options(options: Optional[dict]) -> str:
    options = options or {}
    if options.get("preview_only"):
        return MODE_PREVIEW
    if options.get("dry_run"):
        return MODE_DRY_RUN
    return MODE_IMPORT


class SheetImporter:
    """Reads the shop's sheet and applies it to the catalog for one run."""

    def __init__(
        self,
        shop_id: str,
        run_id: str,
        *,
        sheets,
        connection: SpreadsheetConnection,
        transformer: DataTransformer,
        catalog,
        cache: CacheStore,
        page_size: Optional[int] = None,
    ):
        self.shop_id = shop_id
        self.run_id = run_id
        self.sheets = sheets
        self.connection = connection
        self.transformer = transformer
        self.catalog = catalog
        self.cache = cache
        self.page_size = page_size or settings.sheet_read_page_size

    # ===================
    # READ
    # ===================

    def read_rows(self) -> list[tuple[int, dict[str, str]]]:
        """Non-blank mapped rows below the header, with their sheet row numbers."""
        header = self.sheets.read_header(self.connection.sheet_id, self.connection.sheet_name)
        data_range = join_sheet(
            self.connection.sheet_name,
            f"A{FIRST_DATA_ROW}:{self.transformer.last_column()}",
        )

        values: list[list[str]] = []
        page = 1
        while True:
            result = self.sheets.read_range(
                self.connection.sheet_id,
                data_range,
                page=page,
                page_size=self.page_size,
            )
            values.extend(result.values)
            if not result.has_more:
                break
            page += 1

        rows = []
        for offset, row in enumerate(self.transformer.from_values(values)):
            if any(cell.strip() for cell in row.values()):
                rows.append((FIRST_DATA_ROW + offset, row))

        logger.info(
            "sheet_rows_read",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            header_columns=len(header),
            pages=page,
            rows=len(rows)
        )
        return rows

    # ===================
    # RUN
    # ===================

    def run(self, mode: str = MODE_IMPORT) -> ImportSummary:
        """
        Raises:
            RowValidationError: If a real import has invalid rows
        """
        rows = self.read_rows()
        if not rows:
            return ImportSummary(mode=mode, message="No data found in sheet")

        row_numbers = [number for number, _ in rows]
        validation = self.transformer.validate_import([row for _, row in rows])
        errors = {row_numbers[index]: problems for index, problems in validation.errors.items()}

        if errors:
            message = f"Data validation failed: {len(errors)} errors found"
            if mode != MODE_IMPORT:
                self._store_preview({
                    "mode": mode,
                    "validation_errors": [{"row": n, "errors": e} for n, e in errors.items()],
                    "total_rows": validation.total_rows,
                })
                return ImportSummary(
                    mode=mode,
                    total_rows=validation.total_rows,
                    error_rows=len(errors),
                    message=message,
                )
            self._store_errors([{"row": n, "errors": e} for n, e in errors.items()])
            raise RowValidationError(errors)

        items = [
            (row_numbers[index], self.transformer.to_record(row))
            for index, row in zip(validation.valid_indices, validation.valid)
        ]

        if mode == MODE_PREVIEW:
            return self._preview(items)
        if mode == MODE_DRY_RUN:
            return self._dry_run(items)
        return self._apply(items)

    # ===================
    # PREVIEW / DRY RUN
    # ===================

    def _current_variant(self, item: dict[str, Any]) -> Optional[CatalogRecord]:
        variant_id = item.get("variant_id")
        if not variant_id:
            return None
        return self.catalog.fetch_variant(variant_id)

    def _preview(self, items: list[tuple[int, dict]]) -> ImportSummary:
        preview: list[PreviewRow] = []
        for row_number, item in items:
            entry = PreviewRow(row=row_number, variant_id=item.get("variant_id"), sku=item.get("variant_sku"))
            try:
                current = self._current_variant(item)
            except AppError as e:
                entry.error = e.message
                preview.append(entry)
                continue

            if current is not None:
                for field, new_value in item.items():
                    spec = self.transformer.registry.get(field)
                    current_cell = spec.format(spec.extract(current), self.transformer.options)
                    new_cell = spec.format(new_value, self.transformer.options)
                    if current_cell != new_cell:
                        entry.changes[field] = PreviewChange(current=current_cell, new=new_cell)
            elif item.get("variant_id"):
                entry.error = f"Variant ID {item['variant_id']} not found"
            preview.append(entry)

        self._store_preview({
            "mode": MODE_PREVIEW,
            "preview": [p.model_dump(mode="json") for p in preview],
            "total_rows": len(items),
            "rows_with_changes": sum(1 for p in preview if p.changes),
        })
        return ImportSummary(mode=MODE_PREVIEW, records_processed=len(items), total_rows=len(items),
                             message="Preview generated")

    def _dry_run(self, items: list[tuple[int, dict]]) -> ImportSummary:
        valid, invalid, all_errors = [], [], []
        for row_number, item in items:
            problems = []
            if item.get("variant_id"):
                try:
                    if self._current_variant(item) is None:
                        problems.append(f"Variant ID {item['variant_id']} not found")
                except AppError as e:
                    problems.append(f"Error validating variant: {e.message}")
            else:
                problems.append("Missing variant ID")

            entry = {"row": row_number, "data": item}
            if problems:
                invalid.append({**entry, "errors": problems})
                all_errors.extend(problems)
            else:
                valid.append(entry)

        self._store_preview({
            "mode": MODE_DRY_RUN,
            "valid": valid,
            "invalid": invalid,
            "errors": all_errors,
        })
        return ImportSummary(
            mode=MODE_DRY_RUN,
            records_processed=len(items),
            total_rows=len(items),
            error_rows=len(invalid),
            message="Dry run completed",
        )

    # ===================
    # APPLY
    # ===================

    def build_updates(self, items: list[tuple[int, dict]]) -> tuple[list[dict], list[dict]]:
        """(inventory updates with absolute quantities, variant updates)"""
        inventory_updates, variant_updates = [], []
        for row_number, item in items:
            quantity = item.get("variant_inventory_quantity")
            if quantity is not None:
                if item.get("inventory_item_id") and item.get("location_id"):
                    inventory_updates.append({
                        "inventory_item_id": item["inventory_item_id"],
                        "location_id": item["location_id"],
                        "quantity": quantity,
                        "row": row_number,
                    })
                else:
                    logger.debug("inventory_update_skipped", row=row_number, reason="missing_ids")

            if item.get("variant_id"):
                update = {
                    key: item[field]
                    for field, key in VARIANT_UPDATE_FIELDS.items()
                    if item.get(field) is not None
                }
                if update:
                    variant_updates.append({"id": item["variant_id"], **update})
        return inventory_updates, variant_updates

    def _apply(self, items: list[tuple[int, dict]]) -> ImportSummary:
        inventory_updates, variant_updates = self.build_updates(items)
        errors: list[dict[str, Any]] = []
        updated = 0

        if inventory_updates:
            result = self.catalog.bulk_adjust_inventory(inventory_updates)
            updated += result.total_updated
            errors.extend({"type": "inventory", **e} for e in result.errors)

        if variant_updates:
            try:
                result = self.catalog.bulk_update_variants(variant_updates)
                updated += result.total_updated
            except BulkUpdateRolledBackError as e:
                errors.append({
                    "type": "variant",
                    "variant_id": e.details.get("failed_variant_id"),
                    "error": e.message,
                })

        if errors:
            self._store_errors(errors)

        logger.info(
            "import_applied",
            shop_id=self.shop_id,
            sync_run_id=self.run_id,
            updated=updated,
            errors=len(errors)
        )
        return ImportSummary(
            mode=MODE_IMPORT,
            records_processed=updated,
            total_rows=len(items),
            error_rows=len(errors),
            errors=errors,
            message=f"Import completed: {updated} updated, {len(errors)} errors",
        )

    def _store_preview(self, data: dict) -> None:
        self.cache.set(preview_key(self.run_id), data, PREVIEW_TTL)

    def _store_errors(self, errors: list[dict]) -> None:
        self.cache.set(import_errors_key(self.run_id), errors, IMPORT_ERRORS_TTL)
