"""
Catalog snapshots fetched from the Shopify Admin GraphQL API.

Records are frozen: once built from a GraphQL node they are never mutated,
only read by the transformer.
"""

from pydantic import ConfigDict, Field
from typing import Any, Optional
from datetime import datetime

from models.base import BaseSchema


class SelectedOption(BaseSchema):
    """Variant option such as Size: M."""
    model_config = ConfigDict(frozen=True)

    name: str
    value: str


class InventoryLevel(BaseSchema):
    """Available quantity of one inventory item at one location."""
    model_config = ConfigDict(frozen=True)

    inventory_item_id: str
    location_id: str
    available: int = 0
    location_name: Optional[str] = None
    sku: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict) -> "InventoryLevel":
        location = node.get("location") or {}
        item = node.get("inventoryItem") or {}
        return cls(
            inventory_item_id=item.get("id", ""),
            location_id=location.get("id", ""),
            available=node.get("available") or 0,
            location_name=location.get("name"),
            sku=item.get("sku"),
        )


class CatalogRecord(BaseSchema):
    """
    Product or variant snapshot.

    Product records carry their variants as nested variant records. Variant
    records repeat the parent product's descriptive fields so one record
    maps to one sheet row.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(..., description="Shopify GID of the product or variant")
    product_id: Optional[str] = None
    title: Optional[str] = Field(None, description="Product title")
    variant_title: Optional[str] = None
    handle: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: tuple[str, ...] = ()
    status: Optional[str] = None

    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[str] = None
    compare_at_price: Optional[str] = None
    cost: Optional[str] = None
    inventory_quantity: Optional[int] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    taxable: Optional[bool] = None
    tax_code: Optional[str] = None
    inventory_item_id: Optional[str] = None
    location_id: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    selected_options: tuple[SelectedOption, ...] = ()
    variants: tuple["CatalogRecord", ...] = ()
    inventory_levels: tuple[InventoryLevel, ...] = ()
    image_urls: tuple[str, ...] = ()

    @property
    def is_variant(self) -> bool:
        return self.variant_title is not None or (
            self.product_id is not None and self.product_id != self.id
        )

    def expand_variants(self) -> list["CatalogRecord"]:
        """One record per sheet row: the variants, or the product itself."""
        return list(self.variants) if self.variants else [self]

    @classmethod
    def from_product_node(cls, node: dict) -> "CatalogRecord":
        """Build a product record (with nested variants) from a GraphQL node."""
        base = _product_fields(node)
        variants = tuple(
            cls.from_variant_node(edge["node"], product=node)
            for edge in (node.get("variants") or {}).get("edges", [])
        )
        images = tuple(
            edge["node"].get("url", "")
            for edge in (node.get("images") or {}).get("edges", [])
        )
        return cls(
            id=node["id"],
            product_id=node["id"],
            variants=variants,
            image_urls=images,
            weight=node.get("weight"),
            weight_unit=node.get("weightUnit"),
            tax_code=node.get("taxCode"),
            inventory_quantity=node.get("totalInventory"),
            **base,
        )

    @classmethod
    def from_variant_node(cls, node: dict, product: Optional[dict] = None) -> "CatalogRecord":
        """Build a variant record, inheriting descriptive fields from its product."""
        product = product or node.get("product") or {}
        base = _product_fields(product) if product else {}
        if node.get("createdAt"):
            base["created_at"] = node["createdAt"]
        if node.get("updatedAt"):
            base["updated_at"] = node["updatedAt"]

        item = node.get("inventoryItem") or {}
        levels = tuple(
            InventoryLevel.from_node({**edge["node"], "inventoryItem": item})
            for edge in (item.get("inventoryLevels") or {}).get("edges", [])
        )
        options = tuple(
            SelectedOption(name=o.get("name", ""), value=o.get("value", ""))
            for o in node.get("selectedOptions") or []
        )

        return cls(
            id=node["id"],
            product_id=product.get("id"),
            variant_title=node.get("title"),
            sku=node.get("sku"),
            barcode=node.get("barcode"),
            price=_money(node.get("price")),
            compare_at_price=_money(node.get("compareAtPrice")),
            cost=_money(node.get("cost") or (item.get("unitCost") or {}).get("amount")),
            inventory_quantity=node.get("inventoryQuantity"),
            weight=node.get("weight"),
            weight_unit=node.get("weightUnit"),
            taxable=node.get("taxable"),
            tax_code=node.get("taxCode"),
            inventory_item_id=item.get("id"),
            location_id=levels[0].location_id if levels else None,
            selected_options=options,
            inventory_levels=levels,
            **base,
        )


class CatalogPage(BaseSchema):
    """One page of catalog records plus the continuation cursor."""

    records: list[CatalogRecord] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


class InventoryAdjustResult(BaseSchema):
    """Outcome of a bulk inventory adjustment, isolated per location."""

    updated: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return len(self.updated)

    @property
    def total_errors(self) -> int:
        return len(self.errors)


class VariantUpdateResult(BaseSchema):
    """Outcome of an all-or-nothing variant bulk update."""

    updated: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return len(self.updated)


# ===================
# NODE HELPERS
# ===================

def _money(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("amount")
    return str(value) if value is not None else None


def _product_fields(node: dict) -> dict[str, Any]:
    tags = node.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    return {
        "title": node.get("title"),
        "handle": node.get("handle"),
        "description": node.get("description"),
        "vendor": node.get("vendor"),
        "product_type": node.get("productType"),
        "tags": tuple(tags),
        "status": node.get("status"),
        "created_at": node.get("createdAt"),
        "updated_at": node.get("updatedAt"),
        "published_at": node.get("publishedAt"),
    }
