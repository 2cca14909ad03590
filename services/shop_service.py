"""
Shop service: tenant lookup and catalog client construction.
"""

from typing import Callable, Optional
import structlog

from config import get_supabase_client
from models.shop import Shop
from exceptions import AuthFailedError, DatabaseError, ShopNotFoundError
from integrations.shopify_client import ShopifyCatalogClient
from utils.crypto import decrypt_token

logger = structlog.get_logger(__name__)


class ShopService:
    """Shop lookup."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "shops"

    def get(self, shop_id: str) -> Shop:
        """
        Raises:
            ShopNotFoundError: If no such shop
        """
        try:
            result = self.db.table(self.table).select("*").eq("id", shop_id).execute()
        except Exception as e:
            logger.error("get_shop_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ShopNotFoundError(shop_id)
        return Shop(**result.data[0])

    def get_by_domain(self, shop_domain: str) -> Shop:
        """
        Raises:
            ShopNotFoundError: If no shop is installed on the domain
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("shop_domain", shop_domain.strip().lower())
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_shop_by_domain_failed", shop_domain=shop_domain, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ShopNotFoundError(shop_domain)
        return Shop(**result.data[0])

    def list_all(self) -> list[Shop]:
        try:
            result = self.db.table(self.table).select("*").execute()
        except Exception as e:
            logger.error("list_shops_failed", error=str(e))
            raise DatabaseError("select", str(e))
        return [Shop(**row) for row in result.data]

    def catalog_client(self, shop_id: str, audit: Optional[Callable[..., None]] = None) -> ShopifyCatalogClient:
        """Catalog client authenticated as the shop."""
        shop = self.get(shop_id)
        token = decrypt_token(shop.access_token)
        if not token:
            raise AuthFailedError("shopify", "Shop has no usable access token")
        return ShopifyCatalogClient(shop.shop_domain, token, audit=audit)


# Singleton instance
_shop_service: Optional[ShopService] = None


def get_shop_service() -> ShopService:
    """Get or create ShopService instance."""
    global _shop_service
    if _shop_service is None:
        _shop_service = ShopService()
    return _shop_service
