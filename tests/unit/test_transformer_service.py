"""
Unit tests for DataTransformer.

Run: pytest tests/unit/test_transformer_service.py -v
"""

from copy import deepcopy

from models.field_mapping import FieldMappingResponse
from services.transformer_service import DataTransformer
from tests.factories import CatalogRecordFactory, DEFAULT_MAPPINGS


def make_transformer(mappings=None) -> DataTransformer:
    return DataTransformer(DEFAULT_MAPPINGS if mappings is None else mappings, date_format="%Y-%m-%d", timezone="UTC", currency="USD")


class TestMappingInfo:
    """Tests for header and column layout"""

    def test_header_row(self):
        transformer = make_transformer()

        assert transformer.header_row() == [
            "Variant Id",
            "Variant SKU",
            "Product Title",
            "Variant Price (USD)",
            "Variant Inventory Quantity",
        ]

    def test_header_leaves_gaps_blank(self):
        transformer = make_transformer({"variant_sku": "A", "variant_price": "C"})

        assert transformer.header_row() == ["Variant SKU", "", "Variant Price (USD)"]
        assert transformer.width() == 3

    def test_columns_in_sheet_order(self):
        transformer = make_transformer({"a": "AA", "b": "C", "c": "B"})

        assert transformer.columns() == ["B", "C", "AA"]
        assert transformer.last_column() == "AA"

    def test_built_from_mapping_rows(self):
        """Should keep only active mapping rows."""
        rows = [
            FieldMappingResponse(id="1", shop_id="shop-1", shopify_field="variant_sku", sheet_column="A"),
            FieldMappingResponse(id="2", shop_id="shop-1", shopify_field="variant_price", sheet_column="B", is_active=False),
        ]

        transformer = DataTransformer(rows)

        assert dict(transformer.mappings) == {"variant_sku": "A"}

    def test_mappings_snapshot(self):
        """Should not see edits made to the source dict after construction."""
        source = dict(DEFAULT_MAPPINGS)
        transformer = make_transformer(source)

        source["variant_barcode"] = "Z"

        assert "variant_barcode" not in transformer.mappings

    def test_empty_mappings(self):
        transformer = make_transformer({})

        assert transformer.width() == 0
        assert transformer.header_row() == []


class TestExport:
    """Tests for to_row() / to_values()"""

    def test_to_row(self):
        variant = CatalogRecordFactory.create_variant(
            "gid://shopify/Product/1", title="Oak Tile", sku="OAK-1", price="12.5", inventory_quantity=3
        )

        row = make_transformer().to_row(variant)

        assert row == {"A": variant.id, "B": "OAK-1", "C": "Oak Tile", "D": "12.50", "E": "3"}

    def test_missing_values_blank(self):
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1", price=None, inventory_quantity=None)

        row = make_transformer().to_row(variant)

        assert row["D"] == ""
        assert row["E"] == ""

    def test_to_values_positional(self):
        transformer = make_transformer({"variant_sku": "A", "variant_price": "C"})

        values = transformer.to_values([{"A": "SKU-1", "C": "1.00"}])

        assert values == [["SKU-1", "", "1.00"]]

    def test_validate_export(self):
        product = CatalogRecordFactory.create_product(variants=1)
        orphan = product.model_copy(update={"variants": (product.variants[0].model_copy(update={"id": "", "sku": None}),)})

        result = make_transformer().validate_export([product, orphan])

        assert result.valid is False
        assert list(result.errors) == [1]
        assert result.total_rows == 2


class TestImport:
    """Tests for from_values() / to_record() / validate_import()"""

    def test_from_values_ignores_unmapped_columns(self):
        transformer = make_transformer({"variant_sku": "A", "variant_price": "C"})

        rows = transformer.from_values([["SKU-1", "ignored", "2.00", "also ignored"]])

        assert rows == [{"A": "SKU-1", "C": "2.00"}]

    def test_export_then_parse(self):
        transformer = make_transformer()
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1", sku="OAK-1", price="9.90")

        values = transformer.to_values([transformer.to_row(variant)])
        record = transformer.to_record(transformer.from_values(values)[0])

        assert record["variant_sku"] == "OAK-1"
        assert record["variant_price"] == "9.90"
        assert record["variant_inventory_quantity"] == 5
        assert record["variant_id"] == variant.id

    def test_unparseable_number_becomes_none(self):
        record = make_transformer().to_record({"D": "abc"})

        assert record == {"variant_price": None}

    def test_validate_import_collects_per_row(self):
        transformer = make_transformer()
        rows = [
            {"A": "1", "B": "SKU-1", "C": "Tile", "D": "5.00", "E": "3"},
            {"A": "2", "B": "", "C": "Tile", "D": "5.00"},
            {"A": "3", "B": "SKU-3", "C": "Tile", "D": "-1"},
        ]

        result = transformer.validate_import(rows)

        assert result.valid_indices == [0]
        assert result.valid_rows == 1
        assert result.error_rows == 2
        assert result.errors[1] == ["Required field 'variant_sku' (column B) is missing"]
        assert result.errors[2] == ["Price cannot be negative for field 'variant_price': -1"]

    def test_validate_import_does_not_mutate_rows(self):
        transformer = make_transformer()
        rows = [{"A": "1", "B": "SKU-1", "C": "Tile", "D": "$5"}]
        before = deepcopy(rows)

        transformer.validate_import(rows)

        assert rows == before

    def test_rows_judged_independently(self):
        """Should give a row the same errors whatever its neighbours are."""
        transformer = make_transformer()
        bad = {"A": "9", "B": "SKU-9", "C": "Tile", "D": "x"}

        alone = transformer.validate_import([bad])
        mixed = transformer.validate_import([{"A": "1", "B": "", "C": "", "D": ""}, bad])

        assert alone.errors[0] == mixed.errors[1]

    def test_required_only_when_mapped(self):
        transformer = make_transformer({"variant_sku": "A", "variant_inventory_quantity": "B"})

        result = transformer.validate_import([{"A": "SKU-1", "B": "4"}])

        assert result.error_rows == 0

    def test_negative_quantity_rejected(self):
        transformer = make_transformer({"variant_sku": "A", "variant_inventory_quantity": "B"})

        result = transformer.validate_import([{"A": "SKU-1", "B": "-2"}])

        assert result.errors[0] == ["Inventory quantity cannot be negative for field 'variant_inventory_quantity': -2"]
