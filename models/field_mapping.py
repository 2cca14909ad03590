"""
Field mapping schemas.

A mapping links one catalog field to one sheet column for a shop.
"""

from pydantic import Field, field_validator
from typing import Optional

from models.base import BaseSchema, TimestampMixin


class FieldMappingCreate(BaseSchema):
    """
    Create or replace the mapping for a catalog field.

    Required: shopify_field, sheet_column
    """

    shopify_field: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Canonical catalog field name",
        examples=["variant_sku", "product_title"]
    )
    sheet_column: str = Field(
        ...,
        min_length=1,
        max_length=3,
        description="Spreadsheet column letter",
        examples=["A", "AB"]
    )
    is_active: bool = Field(True, description="Whether the mapping is used by syncs")
    display_order: int = Field(0, ge=0, description="Ordering in the UI")

    @field_validator("sheet_column")
    @classmethod
    def column_letters(cls, v: str) -> str:
        """Column must be letters only, stored uppercase."""
        v = v.upper().strip()
        if not v.isalpha():
            raise ValueError("sheet_column must be a column letter such as A or AB")
        return v

    @field_validator("shopify_field")
    @classmethod
    def field_trimmed(cls, v: str) -> str:
        return v.strip()


class FieldMappingResponse(BaseSchema, TimestampMixin):
    """Stored mapping row."""

    id: str
    shop_id: str
    shopify_field: str
    sheet_column: str
    is_active: bool = True
    display_order: int = 0


class FieldMappingBulkUpdate(BaseSchema):
    """Replace a shop's mapping set in one request."""

    mappings: list[FieldMappingCreate] = Field(..., min_length=1)

    @field_validator("mappings")
    @classmethod
    def unique_active_fields(cls, v: list[FieldMappingCreate]) -> list[FieldMappingCreate]:
        """At most one active mapping per field and per column."""
        fields = [m.shopify_field for m in v if m.is_active]
        if len(fields) != len(set(fields)):
            raise ValueError("Each field can only have one active mapping")
        columns = [m.sheet_column for m in v if m.is_active]
        if len(columns) != len(set(columns)):
            raise ValueError("Each column can only be mapped once")
        return v


class FieldMappingListResponse(BaseSchema):
    """Active mappings for a shop."""

    data: list[FieldMappingResponse]
    total: int
    available_fields: Optional[list[str]] = None
