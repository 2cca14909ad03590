"""
Webhook payload schemas.
"""

from pydantic import ConfigDict, Field
from typing import Optional, Union

from models.base import BaseSchema


class InventoryLevelWebhook(BaseSchema):
    """inventory_levels/update payload (numeric ids as Shopify sends them)."""
    model_config = ConfigDict(extra="ignore")

    inventory_item_id: Union[int, str]
    location_id: Union[int, str]
    available: Optional[int] = None
    updated_at: Optional[str] = None

    @property
    def inventory_item_gid(self) -> str:
        return _gid("InventoryItem", self.inventory_item_id)

    @property
    def location_gid(self) -> str:
        return _gid("Location", self.location_id)


class WebhookAccepted(BaseSchema):
    """Acknowledgement returned to Shopify."""

    accepted: bool = True
    debounced: bool = Field(False, description="Replaced a pending event for the same item")


def _gid(kind: str, value: Union[int, str]) -> str:
    value = str(value)
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/{kind}/{value}"
