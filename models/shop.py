"""
Shop (tenant) schema.
"""

from pydantic import Field
from typing import Optional

from models.base import BaseSchema, TimestampMixin


class Shop(BaseSchema, TimestampMixin):
    """Installed Shopify store; source of catalog credentials."""

    id: str
    shop_domain: str = Field(..., description="e.g. example.myshopify.com")
    access_token: Optional[str] = Field(None, description="Encrypted Admin API token")
    name: Optional[str] = None
