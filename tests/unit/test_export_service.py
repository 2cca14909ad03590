"""
Unit tests for SheetExporter.

Run: pytest tests/unit/test_export_service.py -v
"""

import pytest

from models.spreadsheet_connection import SpreadsheetConnection
from services.cache_service import load_progress
from services.export_service import SheetExporter, scan_column
from services.notification_service import Milestone
from services.transformer_service import DataTransformer
from tests.factories import CatalogRecordFactory, ConnectionFactory, DEFAULT_MAPPINGS
from tests.fakes import FakeCatalog, FakeSheets


class FakeRuns:
    def __init__(self):
        self.updates = []

    def update_records_processed(self, run_id, count):
        self.updates.append((run_id, count))


@pytest.fixture
def transformer():
    return DataTransformer(DEFAULT_MAPPINGS, timezone="UTC", currency="USD")


@pytest.fixture
def runs():
    return FakeRuns()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_exporter(fake_sheets, transformer, runs, memory_cache, fake_notifier, sleeps):
    connection = SpreadsheetConnection(**ConnectionFactory.create())

    def _make(sheets=None, chunk_size=2):
        return SheetExporter(
            "shop-1",
            "run-1",
            sheets=sheets or fake_sheets,
            connection=connection,
            transformer=transformer,
            runs=runs,
            cache=memory_cache,
            notifier=fake_notifier,
            sync_type="full",
            chunk_size=chunk_size,
            sleep=sleeps.append,
        )
    return _make


class TestExportPages:
    """Tests for SheetExporter.export_pages()"""

    def test_empty_catalog_writes_nothing(self, make_exporter, fake_sheets):
        """Should not even write a header for an empty catalog."""
        summary = make_exporter().export_pages(FakeCatalog([]).iter_pages())

        assert fake_sheets.writes == []
        assert summary.records_processed == 0
        assert summary.chunks_written == 0

    def test_chunks_are_contiguous(self, make_exporter, fake_sheets):
        """Should put the header on row 1 and chunks directly below each other."""
        # Arrange
        products = CatalogRecordFactory.create_batch(5)

        # Act
        summary = make_exporter().export_pages(FakeCatalog(products).iter_pages())

        # Assert
        assert [r for r, _ in fake_sheets.writes] == ["Sheet1!A1:E3", "Sheet1!A4:E5", "Sheet1!A6:E6"]
        assert fake_sheets.row(1)[1] == "Variant SKU"
        assert fake_sheets.row(6)[1] == products[4].variants[0].sku
        assert summary.records_processed == 5
        assert summary.rows_written == 5
        assert summary.chunks_written == 3

    def test_one_row_per_variant(self, make_exporter, fake_sheets):
        product = CatalogRecordFactory.create_product(variants=3)

        summary = make_exporter().export_pages(FakeCatalog([product]).iter_pages())

        assert summary.records_processed == 1
        assert summary.rows_written == 3
        assert [fake_sheets.row(n)[0] for n in (2, 3, 4)] == [v.id for v in product.variants]

    def test_failed_chunk_skipped_without_gap(self, make_exporter, fake_sheets, fake_notifier, sleeps):
        """Should retry a chunk, then skip it and let the next chunk take its rows."""
        # Arrange
        products = CatalogRecordFactory.create_batch(5)
        doomed_sku = products[2].variants[0].sku
        fake_sheets.fail_when = lambda range_a1, values: any(doomed_sku in row for row in values)

        # Act
        summary = make_exporter().export_pages(FakeCatalog(products).iter_pages())

        # Assert
        assert sleeps == [2, 4]
        assert [r for r, _ in fake_sheets.writes] == ["Sheet1!A1:E3", "Sheet1!A4:E4"]
        assert fake_sheets.row(4)[1] == products[4].variants[0].sku
        assert summary.chunks_failed == 1
        assert summary.chunks_written == 2
        assert summary.records_processed == 3
        assert Milestone.CHUNK_FAILED in fake_notifier.milestones()

    def test_transient_failure_retried(self, make_exporter, fake_sheets, sleeps):
        attempts = []

        def fail_once(range_a1, values):
            attempts.append(range_a1)
            return len(attempts) == 1

        fake_sheets.fail_when = fail_once

        summary = make_exporter().export_pages(FakeCatalog(CatalogRecordFactory.create_batch(1)).iter_pages())

        assert sleeps == [2]
        assert summary.chunks_failed == 0
        assert summary.chunks_written == 1

    def test_progress_recorded_per_chunk(self, make_exporter, runs, memory_cache, fake_notifier):
        make_exporter().export_pages(FakeCatalog(CatalogRecordFactory.create_batch(5)).iter_pages())

        assert runs.updates == [("run-1", 2), ("run-1", 4), ("run-1", 5)]
        assert load_progress(memory_cache, "run-1").records_processed == 5
        assert fake_notifier.milestones().count(Milestone.CHUNK_WRITTEN) == 3
        assert fake_notifier.milestones().count(Milestone.PAGE_FETCHED) == 3


class TestUpsert:
    """Tests for SheetExporter.upsert()"""

    def test_updates_matching_rows_and_appends_new(self, make_exporter, transformer):
        # Arrange
        product = CatalogRecordFactory.create_product(variants=2)
        first, second = product.variants
        sheets = FakeSheets(
            [transformer.header_row()] + transformer.to_values(transformer.to_rows([first, second]))
        )
        changed = second.model_copy(update={"price": "99.00"})
        new = CatalogRecordFactory.create_variant("gid://shopify/Product/999")

        # Act
        summary = make_exporter(sheets=sheets).upsert([changed, new])

        # Assert
        assert [item["range"] for batch in sheets.batch_writes for item in batch] == ["Sheet1!A3:E3"]
        assert [r for r, _ in sheets.writes] == ["Sheet1!A4:E4"]
        assert sheets.row(3)[3] == "99.00"
        assert sheets.row(4)[0] == new.id
        assert summary.rows_updated == 1
        assert summary.rows_appended == 1

    def test_empty_sheet_gets_header(self, make_exporter, fake_sheets):
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1")

        make_exporter().upsert([variant])

        assert [r for r, _ in fake_sheets.writes] == ["Sheet1!A1:E1", "Sheet1!A2:E2"]
        assert fake_sheets.row(2)[0] == variant.id

    def test_matches_by_sku_without_variant_id(self, make_exporter, fake_sheets, runs, memory_cache):
        transformer = DataTransformer({"variant_sku": "A", "variant_price": "B"}, currency="USD")
        sheets = FakeSheets([["Variant SKU", "Variant Price (USD)"], ["OAK-1", "1.00"]])
        exporter = SheetExporter(
            "shop-1",
            "run-1",
            sheets=sheets,
            connection=SpreadsheetConnection(**ConnectionFactory.create()),
            transformer=transformer,
            runs=runs,
            cache=memory_cache,
        )
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1", sku="OAK-1", price="2.5")

        summary = exporter.upsert([variant])

        assert summary.rows_updated == 1
        assert sheets.row(2) == ["OAK-1", "2.50"]

    def test_appends_below_row_with_blank_key(self, runs, memory_cache):
        """Should append after a row whose SKU is blank but still holds data."""
        # Arrange
        transformer = DataTransformer({"variant_sku": "A", "variant_price": "B"}, currency="USD")
        sheets = FakeSheets(
            [["Variant SKU", "Variant Price (USD)"], ["OAK-1", "1.00"], ["", "7.77"]],
            trim_blank=True,
        )
        exporter = SheetExporter(
            "shop-1",
            "run-1",
            sheets=sheets,
            connection=SpreadsheetConnection(**ConnectionFactory.create()),
            transformer=transformer,
            runs=runs,
            cache=memory_cache,
        )
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1", sku="NEW-1", price="3")

        # Act
        summary = exporter.upsert([variant])

        # Assert
        assert summary.rows_appended == 1
        assert [r for r, _ in sheets.writes] == ["Sheet1!A4:B4"]
        assert sheets.row(3) == ["", "7.77"]
        assert sheets.row(4) == ["NEW-1", "3.00"]

    def test_nothing_to_upsert(self, make_exporter, fake_sheets):
        summary = make_exporter().upsert([])

        assert summary.rows_written == 0
        assert fake_sheets.reads == []


class TestScanColumn:
    def test_first_occurrence_and_last_row(self):
        sheets = FakeSheets([["id"], ["a"], [""], ["b"], ["a"]])

        index, last_row = scan_column(sheets, "sheet-abc", "Sheet1", "A", page_size=2)

        assert index == {"a": 2, "b": 4}
        assert last_row == 5

    def test_empty_column(self):
        index, last_row = scan_column(FakeSheets(), "sheet-abc", "Sheet1", "A")

        assert index == {}
        assert last_row == 1

    def test_full_width_counts_rows_with_blank_key(self):
        sheets = FakeSheets([["sku", "price"], ["a", "1"], ["", "2"], ["", ""]], trim_blank=True)

        index, last_row = scan_column(sheets, "sheet-abc", "Sheet1", "A", last_column="B")

        assert index == {"a": 2}
        assert last_row == 3
        assert sheets.reads == ["Sheet1!A2:B1001"]

    def test_key_column_offset(self):
        sheets = FakeSheets([["id", "sku"], ["gid-1", "OAK-1"], ["gid-2", "ASH-1"]])

        index, _ = scan_column(sheets, "sheet-abc", "Sheet1", "B", last_column="B")

        assert index == {"OAK-1": 2, "ASH-1": 3}
