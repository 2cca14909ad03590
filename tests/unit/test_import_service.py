"""
Unit tests for SheetImporter.

Run: pytest tests/unit/test_import_service.py -v
"""

import pytest

from exceptions import BulkUpdateRolledBackError, RowValidationError
from models.spreadsheet_connection import SpreadsheetConnection
from services.cache_service import import_errors_key, preview_key
from services.import_service import (
    MODE_DRY_RUN,
    MODE_IMPORT,
    MODE_PREVIEW,
    SheetImporter,
    mode_from_options,
)
from services.transformer_service import DataTransformer
from tests.factories import CatalogRecordFactory, ConnectionFactory, IMPORT_MAPPINGS, LOCATION_ID
from tests.fakes import FakeCatalog, FakeSheets

MISSING_VARIANT = "gid://shopify/ProductVariant/404"


@pytest.fixture
def transformer():
    return DataTransformer(IMPORT_MAPPINGS, timezone="UTC", currency="USD")


@pytest.fixture
def product():
    return CatalogRecordFactory.create_product(variants=1, title="Oak Tile")


@pytest.fixture
def variant(product):
    return product.variants[0]


def sheet_row(variant_id="", sku="SKU-1", title="Oak Tile", price="10.00", quantity="5",
              inventory_item_id="", location_id="") -> list[str]:
    return [variant_id, sku, title, price, quantity, inventory_item_id, location_id]


def variant_row(variant, **overrides) -> list[str]:
    values = {
        "variant_id": variant.id,
        "sku": variant.sku,
        "price": "10.00",
        "quantity": "5",
        "inventory_item_id": variant.inventory_item_id,
        "location_id": variant.location_id,
    }
    values.update(overrides)
    return sheet_row(**values)


def make_importer(transformer, rows, catalog, cache, page_size=None) -> SheetImporter:
    sheets = FakeSheets([transformer.header_row()] + rows)
    return SheetImporter(
        "shop-1",
        "run-1",
        sheets=sheets,
        connection=SpreadsheetConnection(**ConnectionFactory.create()),
        transformer=transformer,
        catalog=catalog,
        cache=cache,
        page_size=page_size,
    )


class TestModeFromOptions:
    def test_modes(self):
        assert mode_from_options(None) == MODE_IMPORT
        assert mode_from_options({"dry_run": True}) == MODE_DRY_RUN
        assert mode_from_options({"preview_only": True, "dry_run": True}) == MODE_PREVIEW


class TestReadRows:
    """Tests for SheetImporter.read_rows()"""

    def test_pages_and_skips_blank_rows(self, transformer, memory_cache):
        blank = [""] * 7
        rows = [sheet_row(sku="A"), blank, blank, sheet_row(sku="B")]
        importer = make_importer(transformer, rows, FakeCatalog(), memory_cache, page_size=2)

        read = importer.read_rows()

        assert [number for number, _ in read] == [2, 5]
        assert [row["B"] for _, row in read] == ["A", "B"]

    def test_empty_sheet(self, transformer, memory_cache):
        importer = make_importer(transformer, [], FakeCatalog(), memory_cache)

        summary = importer.run(MODE_IMPORT)

        assert summary.message == "No data found in sheet"
        assert summary.total_rows == 0


class TestValidation:
    """Invalid rows by mode"""

    def test_import_with_invalid_rows_raises(self, transformer, variant, memory_cache):
        """Should apply nothing when any row is invalid."""
        catalog = FakeCatalog([])
        importer = make_importer(transformer, [variant_row(variant), variant_row(variant, price="-1")], catalog, memory_cache)

        with pytest.raises(RowValidationError) as exc:
            importer.run(MODE_IMPORT)

        assert list(exc.value.errors) == [3]
        assert memory_cache.get(import_errors_key("run-1"))[0]["row"] == 3
        assert catalog.variant_calls == []
        assert catalog.inventory_calls == []

    def test_preview_with_invalid_rows_reports(self, transformer, variant, memory_cache):
        importer = make_importer(transformer, [variant_row(variant, price="abc")], FakeCatalog(), memory_cache)

        summary = importer.run(MODE_PREVIEW)

        assert summary.error_rows == 1
        stored = memory_cache.get(preview_key("run-1"))
        assert stored["validation_errors"] == [
            {"row": 2, "errors": ["Invalid price value for field 'variant_price': abc"]}
        ]


class TestPreview:
    def test_diffs_against_current_variant(self, transformer, product, variant, memory_cache):
        rows = [
            variant_row(variant, price="12.00", quantity="5"),
            variant_row(variant, variant_id=MISSING_VARIANT),
        ]
        importer = make_importer(transformer, rows, FakeCatalog([product]), memory_cache)

        summary = importer.run(MODE_PREVIEW)

        assert summary.mode == MODE_PREVIEW
        preview = memory_cache.get(preview_key("run-1"))["preview"]
        assert preview[0]["changes"] == {"variant_price": {"current": "10.00", "new": "12.00"}}
        assert preview[1]["error"] == f"Variant ID {MISSING_VARIANT} not found"

    def test_preview_writes_nothing(self, transformer, product, variant, memory_cache):
        catalog = FakeCatalog([product])
        importer = make_importer(transformer, [variant_row(variant, price="12.00")], catalog, memory_cache)

        importer.run(MODE_PREVIEW)

        assert catalog.variant_calls == []
        assert catalog.inventory_calls == []


class TestDryRun:
    def test_reports_missing_and_unknown_variants(self, transformer, product, variant, memory_cache):
        rows = [
            variant_row(variant),
            variant_row(variant, variant_id=MISSING_VARIANT),
            sheet_row(sku="NEW-1"),
        ]
        catalog = FakeCatalog([product])
        importer = make_importer(transformer, rows, catalog, memory_cache)

        summary = importer.run(MODE_DRY_RUN)

        assert summary.error_rows == 2
        stored = memory_cache.get(preview_key("run-1"))
        assert [entry["row"] for entry in stored["valid"]] == [2]
        assert stored["errors"] == [f"Variant ID {MISSING_VARIANT} not found", "Missing variant ID"]
        assert catalog.variant_calls == []


class TestApply:
    """Tests for the import mode"""

    def test_applies_inventory_and_variant_updates(self, transformer, product, variant, memory_cache):
        catalog = FakeCatalog([product])
        importer = make_importer(transformer, [variant_row(variant, price="12.00", quantity="10")], catalog, memory_cache)

        summary = importer.run(MODE_IMPORT)

        assert catalog.inventory_calls == [[{
            "inventory_item_id": variant.inventory_item_id,
            "location_id": LOCATION_ID,
            "quantity": 10,
            "row": 2,
        }]]
        assert catalog.variant_calls == [[{"id": variant.id, "price": "12.00", "sku": variant.sku}]]
        assert summary.records_processed == 2
        assert summary.message == "Import completed: 2 updated, 0 errors"

    def test_quantity_without_ids_not_adjusted(self, transformer, product, variant, memory_cache):
        catalog = FakeCatalog([product])
        row = variant_row(variant, inventory_item_id="", location_id="")
        importer = make_importer(transformer, [row], catalog, memory_cache)

        importer.run(MODE_IMPORT)

        assert catalog.inventory_calls == []
        assert len(catalog.variant_calls) == 1

    def test_rolled_back_variants_reported(self, transformer, product, variant, memory_cache):
        """Should complete with an error entry when the variant batch rolls back."""
        catalog = FakeCatalog([product])
        catalog.variant_error = BulkUpdateRolledBackError("Variant update failed", variant.id, 0)
        importer = make_importer(transformer, [variant_row(variant)], catalog, memory_cache)

        summary = importer.run(MODE_IMPORT)

        assert summary.errors == [{"type": "variant", "variant_id": variant.id, "error": "Variant update failed"}]
        assert summary.records_processed == 1
        assert memory_cache.get(import_errors_key("run-1")) == summary.errors

    def test_inventory_errors_reported(self, transformer, product, variant, memory_cache):
        catalog = FakeCatalog([product])
        catalog.inventory_errors = [{"location_id": LOCATION_ID, "error": "Not stocked"}]
        importer = make_importer(transformer, [variant_row(variant)], catalog, memory_cache)

        summary = importer.run(MODE_IMPORT)

        assert summary.errors == [{"type": "inventory", "location_id": LOCATION_ID, "error": "Not stocked"}]
        assert summary.message == "Import completed: 2 updated, 1 errors"
