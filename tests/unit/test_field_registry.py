"""
Unit tests for the catalog field registry.

Run: pytest tests/unit/test_field_registry.py -v
"""

from datetime import datetime, timezone

import pytest

from services.field_registry import (
    FormatOptions,
    KIND_BOOLEAN,
    KIND_DATE,
    KIND_PRICE,
    KIND_QUANTITY,
    KIND_TEXT,
    KIND_WEIGHT,
    REGISTRY,
    format_options_text,
    kind_for,
    parse_price,
    resolve_path,
)
from tests.factories import CatalogRecordFactory

OPTIONS = FormatOptions(date_format="%Y-%m-%d %H:%M", timezone="UTC", currency="USD")


class TestKindFor:
    """Tests for kind_for()"""

    @pytest.mark.parametrize("field,kind", [
        ("variant_price", KIND_PRICE),
        ("variant_compare_at_price", KIND_PRICE),
        ("variant_cost", KIND_PRICE),
        ("variant_inventory_quantity", KIND_QUANTITY),
        ("product_created_at", KIND_DATE),
        ("variant_weight", KIND_WEIGHT),
        ("variant_weight_unit", KIND_TEXT),
        ("variant_taxable", KIND_BOOLEAN),
        ("location_id", KIND_TEXT),
        ("product_title", KIND_TEXT),
    ])
    def test_kinds(self, field, kind):
        assert kind_for(field) == kind


class TestFormatting:
    """Tests for FieldSpec.format()"""

    def test_price_two_decimals(self):
        assert REGISTRY.get("variant_price").format("12.5", OPTIONS) == "12.50"

    def test_quantity_integer(self):
        assert REGISTRY.get("variant_inventory_quantity").format(7, OPTIONS) == "7"

    def test_boolean_cells(self):
        spec = REGISTRY.get("variant_taxable")

        assert spec.format(True, OPTIONS) == "TRUE"
        assert spec.format(False, OPTIONS) == "FALSE"

    def test_date_uses_configured_format(self):
        spec = REGISTRY.get("product_created_at")

        cell = spec.format(datetime(2025, 1, 1, 12, 30, tzinfo=timezone.utc), OPTIONS)

        assert cell == "2025-01-01 12:30"

    def test_tags_joined(self):
        assert REGISTRY.get("product_tags").format(("a", "b"), OPTIONS) == "a, b"

    def test_missing_value_is_blank(self):
        """Should render None as an empty cell, not 'None' or '0.00'."""
        assert REGISTRY.get("variant_price").format(None, OPTIONS) == ""
        assert REGISTRY.get("product_title").format("", OPTIONS) == ""


class TestParsing:
    """Tests for FieldSpec.parse()"""

    def test_price_strips_currency_and_separators(self):
        assert parse_price("$1,234.50 USD", OPTIONS) == "1234.50"

    def test_price_keeps_sign(self):
        assert parse_price("-5", OPTIONS) == "-5"

    def test_price_not_numeric(self):
        with pytest.raises(ValueError):
            parse_price("free", OPTIONS)

    def test_quantity(self):
        assert REGISTRY.get("variant_inventory_quantity").parse("1,200", OPTIONS) == 1200

    def test_boolean(self):
        spec = REGISTRY.get("variant_taxable")

        assert spec.parse("yes", OPTIONS) is True
        assert spec.parse("FALSE", OPTIONS) is False

    def test_naive_date_read_in_shop_timezone(self):
        spec = REGISTRY.get("product_updated_at")

        assert spec.parse("2025-03-01 10:00", OPTIONS) == "2025-03-01T10:00:00+00:00"

    def test_blank_is_none(self):
        assert REGISTRY.get("variant_price").parse("  ", OPTIONS) is None


class TestExtraction:
    """Tests for record lookups"""

    def test_alias_reads_record_attribute(self):
        variant = CatalogRecordFactory.create_variant("gid://shopify/Product/1", sku="TILE-1")

        assert REGISTRY.get("variant_sku").extract(variant) == "TILE-1"
        assert REGISTRY.get("product_title").extract(variant) == "Product"

    def test_dotted_path(self):
        record = {"inventory_levels": [{"available": 4}]}

        assert resolve_path(record, "inventory_levels.0.available") == 4
        assert REGISTRY.get("inventory_levels.0.available").extract(record) == 4

    def test_dotted_path_missing_segment(self):
        assert resolve_path({"a": {}}, "a.b.c") is None

    def test_camel_case_keys(self):
        assert resolve_path({"compareAtPrice": "9.00"}, "compare_at_price") == "9.00"

    def test_options_text(self):
        record = {"selected_options": [{"name": "Size", "value": "M"}, {"name": "Color", "value": "Red"}]}

        assert format_options_text(record) == "Size: M / Color: Red"

    def test_unknown_field_falls_back_to_key(self):
        spec = REGISTRY.get("custom_field")

        assert spec.extract({"custom_field": "x"}) == "x"
        assert "custom_field" not in REGISTRY

    def test_labels(self):
        assert REGISTRY.get("variant_sku").label == "Variant SKU"
        assert REGISTRY.get("product_title").label == "Product Title"
