"""
Symmetric encryption for credentials stored at rest.

OAuth tokens and Shopify access tokens are kept as Fernet ciphertext and
only decrypted in memory while a request or job needs them.
"""

from functools import lru_cache
from typing import Optional
import json

from cryptography.fernet import Fernet, InvalidToken
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)


@lru_cache()
def get_fernet() -> Fernet:
    """
    Get the cached Fernet instance.

    Raises:
        ValueError: If ENCRYPTION_KEY is missing or malformed
    """
    if not settings.encryption_key:
        raise ValueError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_token(value: Optional[str]) -> Optional[str]:
    """Encrypt a secret; None and empty strings stay None."""
    if not value:
        return None
    return get_fernet().encrypt(value.encode()).decode()


def decrypt_token(value: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored secret.

    Returns None when the value is empty or cannot be decrypted (logged).
    """
    if not value:
        return None
    try:
        return get_fernet().decrypt(value.encode()).decode()
    except InvalidToken as e:
        logger.error(
            "token_decrypt_failed",
            error=type(e).__name__
        )
        return None


def encrypt_payload(payload: dict) -> str:
    """Encrypt a JSON-serializable dict (OAuth state)."""
    return get_fernet().encrypt(json.dumps(payload).encode()).decode()


def decrypt_payload(token: str, max_age_seconds: Optional[int] = None) -> dict:
    """
    Decrypt a payload produced by encrypt_payload.

    Raises:
        InvalidToken: If tampered with or older than max_age_seconds
    """
    raw = get_fernet().decrypt(token.encode(), ttl=max_age_seconds)
    return json.loads(raw.decode())
