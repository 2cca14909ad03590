"""
Data transformer: catalog records <-> sheet rows, driven by field mappings.

A transformer snapshots the shop's active mappings when it is built. A
mapping edited mid-sync does not affect the sync already holding a
transformer.
"""

from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union
import structlog

from config.settings import settings
from models.field_mapping import FieldMappingResponse
from models.sync import ExportValidation, ImportValidation
from services.field_registry import (
    FieldRegistry,
    FormatOptions,
    KIND_PRICE,
    KIND_QUANTITY,
    KIND_WEIGHT,
    REGISTRY,
)
from utils.a1 import column_to_index, index_to_column, sort_columns

logger = structlog.get_logger(__name__)

SheetRow = dict[str, str]

REQUIRED_FIELDS = ("product_title", "variant_sku", "variant_price")


class DataTransformer:
    """
    Bidirectional mapping between catalog records and sheet rows.

    Args:
        mappings: {shopify_field: sheet_column}, or mapping rows in display order
        date_format / timezone / currency: cell formatting for this shop
    """

    def __init__(
        self,
        mappings: Union[Mapping[str, str], Iterable[FieldMappingResponse]],
        *,
        date_format: Optional[str] = None,
        timezone: Optional[str] = None,
        currency: Optional[str] = None,
        registry: FieldRegistry = REGISTRY,
    ):
        if not isinstance(mappings, Mapping):
            mappings = {m.shopify_field: m.sheet_column for m in mappings if m.is_active}
        self._mappings = MappingProxyType(dict(mappings))
        self._by_column = MappingProxyType({col: field for field, col in self._mappings.items()})
        self.registry = registry
        self.options = FormatOptions(
            date_format=date_format or settings.sync_date_format,
            timezone=timezone or settings.sync_timezone,
            currency=currency or settings.sync_currency,
        )

    @classmethod
    def for_shop(cls, shop_id: str, **kwargs) -> "DataTransformer":
        """Load the shop's active mappings once."""
        from services.field_mapping_service import get_field_mapping_service

        mappings = get_field_mapping_service().get_active(shop_id)
        logger.debug("transformer_loaded", shop_id=shop_id, mappings=len(mappings))
        return cls(mappings, **kwargs)

    # ===================
    # MAPPING INFO
    # ===================

    @property
    def mappings(self) -> Mapping[str, str]:
        return self._mappings

    def column_for(self, field: str) -> Optional[str]:
        return self._mappings.get(field)

    def columns(self) -> list[str]:
        """Mapped columns in sheet order."""
        return sort_columns(self._mappings.values())

    def last_column(self) -> str:
        columns = self.columns()
        return columns[-1] if columns else "A"

    def width(self) -> int:
        """Number of cells from column A to the last mapped column."""
        return column_to_index(self.last_column()) if self._mappings else 0

    def header_row(self) -> list[str]:
        """Column headings from A to the last mapped column."""
        header = [""] * self.width()
        for field, column in self._mappings.items():
            spec = self.registry.get(field)
            label = spec.label
            if spec.kind == KIND_PRICE:
                label = f"{label} ({self.options.currency})"
            header[column_to_index(column) - 1] = label
        return header

    # ===================
    # EXPORT
    # ===================

    def to_row(self, record: Any) -> SheetRow:
        row = {}
        for field, column in self._mappings.items():
            spec = self.registry.get(field)
            row[column] = spec.format(spec.extract(record), self.options)
        return row

    def to_rows(self, records: Iterable[Any]) -> list[SheetRow]:
        return [self.to_row(record) for record in records]

    def to_values(self, rows: Iterable[SheetRow]) -> list[list[str]]:
        """Rows as positional lists starting at column A; gaps are blank."""
        width = self.width()
        values = []
        for row in rows:
            cells = [""] * width
            for column, value in row.items():
                cells[column_to_index(column) - 1] = value
            values.append(cells)
        return values

    def validate_export(self, records: Iterable[Any]) -> ExportValidation:
        """Each record needs an id or title; each variant an id or sku."""
        errors: dict[int, list[str]] = {}
        total = 0
        for index, record in enumerate(records):
            total += 1
            problems = []
            if not getattr(record, "id", None) and not getattr(record, "title", None):
                problems.append("Missing required identifier (id or title)")
            for position, variant in enumerate(getattr(record, "variants", ()) or ()):
                if not getattr(variant, "id", None) and not getattr(variant, "sku", None):
                    problems.append(f"Variant #{position} missing identifier")
            if problems:
                errors[index] = problems

        return ExportValidation(valid=not errors, errors=errors, total_rows=total)

    # ===================
    # IMPORT
    # ===================

    def from_values(self, values: Iterable[list[Any]], first_column: str = "A") -> list[SheetRow]:
        """Positional sheet values back into column-keyed rows."""
        offset = column_to_index(first_column)
        rows = []
        for cells in values:
            row = {}
            for position, cell in enumerate(cells):
                column = index_to_column(offset + position)
                if column in self._by_column:
                    row[column] = "" if cell is None else str(cell)
            rows.append(row)
        return rows

    def to_record(self, row: SheetRow) -> dict[str, Any]:
        """
        Parse one row into {field: value}. Unparseable numeric cells become
        None; validate_import reports them.
        """
        record = {}
        for column, value in row.items():
            field = self._by_column.get(column)
            if field is None:
                continue
            spec = self.registry.get(field)
            try:
                record[field] = spec.parse(value, self.options)
            except ValueError:
                record[field] = None
        return record

    def to_records(self, rows: Iterable[SheetRow]) -> list[dict[str, Any]]:
        records = []
        for row in rows:
            record = self.to_record(row)
            if record:
                records.append(record)
        return records

    def validate_import(self, rows: list[SheetRow]) -> ImportValidation:
        """
        Check required fields and numeric cells row by row.

        The input rows are not modified.
        """
        result = ImportValidation(total_rows=len(rows))
        for index, row in enumerate(rows):
            problems = self._row_errors(row)
            if problems:
                result.errors[index] = problems
            else:
                result.valid.append(dict(row))
                result.valid_indices.append(index)

        if result.errors:
            logger.info(
                "import_rows_rejected",
                total_rows=result.total_rows,
                error_rows=result.error_rows
            )
        return result

    def _row_errors(self, row: SheetRow) -> list[str]:
        problems = []
        for field in REQUIRED_FIELDS:
            column = self._mappings.get(field)
            if column is None:
                continue
            if not str(row.get(column) or "").strip():
                problems.append(f"Required field '{field}' (column {column}) is missing")

        for column, value in row.items():
            field = self._by_column.get(column)
            if field is None or not str(value or "").strip():
                continue
            problem = self._value_error(field, value)
            if problem:
                problems.append(problem)
        return problems

    def _value_error(self, field: str, value: str) -> Optional[str]:
        spec = self.registry.get(field)
        if spec.kind not in (KIND_PRICE, KIND_QUANTITY, KIND_WEIGHT):
            return None
        try:
            parsed = spec.parse(value, self.options)
        except ValueError:
            return f"Invalid {spec.kind} value for field '{field}': {value}"

        if float(parsed) < 0:
            if spec.kind == KIND_PRICE:
                return f"Price cannot be negative for field '{field}': {value}"
            if spec.kind == KIND_QUANTITY:
                return f"Inventory quantity cannot be negative for field '{field}': {value}"
            return f"Weight cannot be negative for field '{field}': {value}"
        return None
