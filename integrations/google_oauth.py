"""
Google OAuth2 authorization-code flow.

Only the pieces the sync engine needs: building the consent URL, the
encrypted state round-trip, code exchange and refresh-token grant.
"""

from typing import Optional
from urllib.parse import urlencode

import requests
import structlog
from cryptography.fernet import InvalidToken

from config.settings import settings
from exceptions import AuthFailedError, InvalidOAuthStateError, UpstreamApiError
from utils.crypto import decrypt_payload, encrypt_payload

logger = structlog.get_logger(__name__)

OAUTH_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"


def encode_state(shop_id: str, return_url: Optional[str] = None) -> str:
    """Opaque, encrypted state carrying the shop and where to send the user back."""
    return encrypt_payload({"shop_id": shop_id, "return_url": return_url or "/"})


def decode_state(token: Optional[str]) -> dict:
    """
    Decrypt a state token.

    Raises:
        InvalidOAuthStateError: If missing, tampered with or expired
    """
    if not token:
        raise InvalidOAuthStateError("Missing state parameter")
    try:
        payload = decrypt_payload(token, max_age_seconds=settings.oauth_state_max_age_seconds)
    except (InvalidToken, ValueError) as e:
        logger.warning("oauth_state_invalid", error=type(e).__name__)
        raise InvalidOAuthStateError() from e
    if not payload.get("shop_id"):
        raise InvalidOAuthStateError("State does not identify a shop")
    return payload


class GoogleOAuthClient:
    """Token endpoint client; credentials default to settings."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scopes: Optional[list[str]] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self.scopes = scopes or settings.google_scopes
        self.session = session or requests.Session()
        self.timeout = timeout

    def build_authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{OAUTH_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict:
        """
        Exchange an authorization code for tokens.

        Returns:
            dict with access_token and, on first consent, refresh_token
        """
        tokens = self._token_request({
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }, "OAuth error")
        if not tokens.get("access_token"):
            raise UpstreamApiError("google_sheets", "No access token received")
        return tokens

    def refresh_access_token(self, refresh_token: str) -> dict:
        """
        Use the refresh-token grant.

        Raises:
            AuthFailedError: If Google rejects the refresh token
        """
        return self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }, "Token refresh failed")

    def _token_request(self, form: dict, failure: str) -> dict:
        try:
            response = self.session.post(OAUTH_TOKEN_URL, data=form, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamApiError("google_sheets", f"{failure}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("error_description") or body.get("error") or "Unknown error"
            logger.warning(
                "google_token_request_failed",
                grant_type=form.get("grant_type"),
                status=response.status_code,
                error=message
            )
            if response.status_code in (400, 401):
                raise AuthFailedError("google_sheets", f"{failure}: {message}")
            raise UpstreamApiError(
                "google_sheets",
                f"{failure}: {message}",
                details={"http_status": response.status_code},
            )
        return body
