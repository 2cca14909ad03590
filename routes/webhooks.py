"""
Shopify webhook routes.

Requests are authenticated by the X-Shopify-Hmac-Sha256 header: base64 of
the HMAC-SHA256 of the raw body keyed with the app's webhook secret.
"""

import base64
import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
import structlog

from config.settings import settings
from models.webhook import InventoryLevelWebhook, WebhookAccepted
from services.shop_service import get_shop_service
from exceptions import AppError, AuthFailedError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def verify_hmac(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


# ===================
# ROUTES
# ===================

@router.post("/inventory-levels-update", response_model=WebhookAccepted)
async def inventory_levels_update(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_shop_domain: Optional[str] = Header(None)
):
    """
    inventory_levels/update.

    The row rewrite is debounced per inventory item; a burst of events for
    the same item results in one sheet write.
    """
    from jobs.tasks import get_webhook_debouncer

    try:
        body = await request.body()
        if not verify_hmac(body, x_shopify_hmac_sha256, settings.shopify_webhook_secret):
            logger.warning("webhook_signature_invalid", shop_domain=x_shopify_shop_domain)
            raise AuthFailedError("shopify", "Invalid webhook signature")
        if not x_shopify_shop_domain:
            raise ValidationError("Missing X-Shopify-Shop-Domain header", code="MISSING_SHOP_DOMAIN")

        try:
            event = InventoryLevelWebhook(**json.loads(body))
        except (ValueError, TypeError) as e:
            raise ValidationError("Invalid webhook payload", code="INVALID_WEBHOOK_PAYLOAD") from e

        shop = get_shop_service().get_by_domain(x_shopify_shop_domain)
        debounced = get_webhook_debouncer().submit(shop.id, event)
        return WebhookAccepted(accepted=True, debounced=debounced)
    except Exception as e:
        return handle_error(e)
