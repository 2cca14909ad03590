"""
Unit tests for FieldMappingService.

Run: pytest tests/unit/test_field_mapping_service.py -v
"""

import pytest

from exceptions import DatabaseError
from models.field_mapping import FieldMappingCreate
from services.field_mapping_service import get_field_mapping_service
from tests.factories import DEFAULT_MAPPINGS, MappingFactory


class TestGetActive:
    """Tests for FieldMappingService.get_active()"""

    def test_active_only_in_display_order(self, mock_db, mock_supabase):
        rows = MappingFactory.create_set(mappings={"variant_sku": "A", "variant_price": "B"})
        rows[0]["display_order"] = 5
        rows.append({**rows[1], "id": "old", "sheet_column": "Z", "is_active": False})
        mock_supabase.set_table_data("sync_field_mappings", rows)

        mappings = get_field_mapping_service().get_active("shop-1")

        assert [m.shopify_field for m in mappings] == ["variant_price", "variant_sku"]

    def test_mapping_table(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("sync_field_mappings", MappingFactory.create_set())

        assert get_field_mapping_service().get_mapping_table("shop-1") == DEFAULT_MAPPINGS

    def test_other_shop_not_visible(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("sync_field_mappings", MappingFactory.create_set(shop_id="shop-2"))

        assert get_field_mapping_service().get_active("shop-1") == []

    def test_select_failure(self, mock_db, mock_supabase):
        mock_supabase.fail_table("sync_field_mappings")

        with pytest.raises(DatabaseError):
            get_field_mapping_service().get_active("shop-1")


class TestUpsertMapping:
    """Tests for FieldMappingService.upsert_mapping()"""

    def test_replaces_previous_active_mapping(self, mock_db, mock_supabase):
        """Should leave exactly one active mapping per field."""
        # Arrange
        mock_supabase.set_table_data("sync_field_mappings", MappingFactory.create_set(mappings={"variant_sku": "A"}))
        service = get_field_mapping_service()

        # Act
        saved = service.upsert_mapping("shop-1", FieldMappingCreate(shopify_field="variant_sku", sheet_column="c"))

        # Assert
        assert saved.sheet_column == "C"
        active = [r for r in mock_supabase.rows("sync_field_mappings") if r["is_active"]]
        assert len(active) == 1
        assert active[0]["sheet_column"] == "C"

    def test_inactive_mapping_leaves_current(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("sync_field_mappings", MappingFactory.create_set(mappings={"variant_sku": "A"}))
        service = get_field_mapping_service()

        service.upsert_mapping("shop-1", FieldMappingCreate(shopify_field="variant_sku", sheet_column="D", is_active=False))

        assert service.get_mapping_table("shop-1") == {"variant_sku": "A"}


class TestReplaceAll:
    def test_replaces_whole_set(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("sync_field_mappings", MappingFactory.create_set())
        service = get_field_mapping_service()

        saved = service.replace_all("shop-1", [
            FieldMappingCreate(shopify_field="variant_sku", sheet_column="A"),
            FieldMappingCreate(shopify_field="variant_barcode", sheet_column="B"),
        ])

        assert [m.shopify_field for m in saved] == ["variant_sku", "variant_barcode"]
        assert service.get_mapping_table("shop-1") == {"variant_sku": "A", "variant_barcode": "B"}

    def test_column_must_be_letters(self):
        with pytest.raises(ValueError):
            FieldMappingCreate(shopify_field="variant_sku", sheet_column="A1")
