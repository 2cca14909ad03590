"""
Field mapping service.

Owns sync_field_mappings. At most one active mapping per catalog field per
shop: upserting a field deactivates its previous active mapping.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.field_mapping import FieldMappingCreate, FieldMappingResponse
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class FieldMappingService:
    """Field mapping CRUD."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "sync_field_mappings"

    def get_active(self, shop_id: str) -> list[FieldMappingResponse]:
        """Active mappings ordered by display_order."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("shop_id", shop_id)
                .eq("is_active", True)
                .order("display_order")
                .execute()
            )
            mappings = [FieldMappingResponse(**row) for row in result.data]
            logger.debug("field_mappings_loaded", shop_id=shop_id, count=len(mappings))
            return mappings

        except Exception as e:
            logger.error("get_field_mappings_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("select", str(e))

    def get_mapping_table(self, shop_id: str) -> dict[str, str]:
        """{shopify_field: sheet_column} for the active set."""
        return {m.shopify_field: m.sheet_column for m in self.get_active(shop_id)}

    def upsert_mapping(self, shop_id: str, data: FieldMappingCreate) -> FieldMappingResponse:
        """
        Create the mapping for a field, deactivating any previous active one.

        Raises:
            DatabaseError: If the write fails
        """
        now = datetime.now(timezone.utc).isoformat()
        try:
            if data.is_active:
                (
                    self.db.table(self.table)
                    .update({"is_active": False, "updated_at": now})
                    .eq("shop_id", shop_id)
                    .eq("shopify_field", data.shopify_field)
                    .eq("is_active", True)
                    .execute()
                )

            result = (
                self.db.table(self.table)
                .insert({
                    "shop_id": shop_id,
                    "shopify_field": data.shopify_field,
                    "sheet_column": data.sheet_column,
                    "is_active": data.is_active,
                    "display_order": data.display_order,
                    "created_at": now,
                })
                .execute()
            )
            mapping = FieldMappingResponse(**result.data[0])
            logger.info(
                "field_mapping_saved",
                shop_id=shop_id,
                field=data.shopify_field,
                column=data.sheet_column
            )
            return mapping

        except Exception as e:
            logger.error("upsert_field_mapping_failed", shop_id=shop_id, field=data.shopify_field, error=str(e))
            raise DatabaseError("upsert", str(e))

    def replace_all(self, shop_id: str, mappings: list[FieldMappingCreate]) -> list[FieldMappingResponse]:
        """Deactivate the current set and save the given one."""
        try:
            (
                self.db.table(self.table)
                .update({"is_active": False, "updated_at": datetime.now(timezone.utc).isoformat()})
                .eq("shop_id", shop_id)
                .eq("is_active", True)
                .execute()
            )
        except Exception as e:
            logger.error("deactivate_field_mappings_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("update", str(e))

        saved = [self.upsert_mapping(shop_id, m) for m in mappings]
        logger.info("field_mappings_replaced", shop_id=shop_id, count=len(saved))
        return [m for m in saved if m.is_active]


# Singleton instance
_field_mapping_service: Optional[FieldMappingService] = None


def get_field_mapping_service() -> FieldMappingService:
    """Get or create FieldMappingService instance."""
    global _field_mapping_service
    if _field_mapping_service is None:
        _field_mapping_service = FieldMappingService()
    return _field_mapping_service
