"""
Google Sheets v4 REST client bound to one shop's connection.

Requests carry the decrypted access token. A 401 triggers exactly one
refresh-and-retry; a second 401 means the user has to reconnect.
"""

import time
from typing import Any, Callable, Optional, Protocol
from urllib.parse import quote

import requests
import structlog

from config.settings import settings
from exceptions import (
    AuthFailedError,
    QuotaExceededError,
    RateLimitedError,
    SheetsNotConnectedError,
    UpstreamApiError,
)
from integrations.google_oauth import GoogleOAuthClient
from models.spreadsheet_connection import SheetPage, SpreadsheetConnection, StructureValidation
from services.cache_service import CacheStore, RATE_LIMIT_TTL, rate_limit_key
from utils.a1 import build_range, index_to_column, join_sheet, page_range, parse_range
from utils.crypto import decrypt_token

logger = structlog.get_logger(__name__)

API_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
MAX_ROWS_PER_WRITE = 1000


class TokenStore(Protocol):
    """Persists refreshed tokens (encrypted) for a shop."""

    def save_tokens(self, shop_id: str, access_token: str, refresh_token: Optional[str] = None) -> Any:
        ...


class SheetsClient:
    """
    Range-addressed CRUD against one spreadsheet connection.

    Ranges are A1 strings and may include the tab name ("Sheet1!A2:F").
    """

    def __init__(
        self,
        connection: SpreadsheetConnection,
        *,
        token_store: TokenStore,
        cache: CacheStore,
        oauth: Optional[GoogleOAuthClient] = None,
        session: Optional[requests.Session] = None,
        max_rows_per_write: Optional[int] = None,
        timeout: int = 60,
        rate_limit_pause: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not connection.has_valid_tokens:
            raise SheetsNotConnectedError(connection.shop_id)
        self.connection = connection
        self.shop_id = connection.shop_id
        self.token_store = token_store
        self.cache = cache
        self.oauth = oauth or GoogleOAuthClient()
        self.session = session or requests.Session()
        self.max_rows_per_write = max_rows_per_write or settings.sheet_write_batch_size
        self.timeout = timeout
        self.rate_limit_pause = settings.sheets_rate_limit_pause_seconds if rate_limit_pause is None else rate_limit_pause
        self.sleep = sleep
        self._access_token = decrypt_token(connection.access_token)

    # ===================
    # TRANSPORT
    # ===================

    def request(
        self,
        method: str,
        url: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None
    ) -> dict:
        """
        Authenticated request with a single refresh on 401.

        While another task has flagged this shop as rate limited, pause once
        before sending.
        """
        if self.is_rate_limited():
            logger.info("sheets_rate_limit_wait", shop_id=self.shop_id, seconds=self.rate_limit_pause)
            self.sleep(self.rate_limit_pause)

        response = self._send(method, url, json, params)

        if response.status_code == 401:
            logger.info("sheets_token_expired", shop_id=self.shop_id)
            self._refresh_access_token()
            response = self._send(method, url, json, params)
            if response.status_code == 401:
                logger.warning("sheets_auth_failed_after_refresh", shop_id=self.shop_id)
                raise AuthFailedError(
                    "google_sheets",
                    "Google Sheets authentication failed. Please reconnect your account."
                )

        if response.status_code >= 400:
            self._raise_api_error(response)

        if not response.content:
            return {}
        return response.json()

    def _send(self, method: str, url: str, json: Optional[dict], params: Optional[dict]):
        headers = {"Authorization": f"Bearer {self._access_token or ''}"}
        try:
            return self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamApiError("google_sheets", f"Google Sheets request failed: {e}") from e

    def _refresh_access_token(self) -> None:
        refresh_token = decrypt_token(self.connection.refresh_token)
        if not refresh_token:
            raise AuthFailedError("google_sheets", "No refresh token available")

        tokens = self.oauth.refresh_access_token(refresh_token)
        access_token = tokens.get("access_token")
        if not access_token:
            raise AuthFailedError("google_sheets", "Token refresh returned no access token")

        self._access_token = access_token
        updated = self.token_store.save_tokens(
            self.shop_id,
            access_token,
            tokens.get("refresh_token"),
        )
        if isinstance(updated, SpreadsheetConnection):
            self.connection = updated
        logger.info("sheets_token_refreshed", shop_id=self.shop_id)

    def _raise_api_error(self, response) -> None:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or body.get("error_description") or response.text[:300] or "Unknown error"
        reasons = " ".join(d.get("reason", "") for d in error.get("errors", []) if isinstance(d, dict))
        markers = f"{message} {reasons} {error.get('status', '')}"

        if status == 429 or "rateLimitExceeded" in markers:
            logger.warning("sheets_rate_limited", shop_id=self.shop_id)
            self.cache.set(rate_limit_key(self.shop_id), True, RATE_LIMIT_TTL)
            raise RateLimitedError(
                "google_sheets",
                "Google Sheets API rate limit exceeded. Please try again later."
            )
        if status == 403 and "quotaExceeded" in markers:
            logger.error("sheets_quota_exceeded", shop_id=self.shop_id)
            raise QuotaExceededError("google_sheets", "Google Sheets API quota exceeded.")
        if status in (401, 403):
            logger.warning("sheets_auth_error", shop_id=self.shop_id, status=status)
            raise AuthFailedError(
                "google_sheets",
                "Google Sheets authentication failed. Please reconnect your account."
            )
        raise UpstreamApiError(
            "google_sheets",
            f"Google Sheets API error: {message}",
            details={"http_status": status},
        )

    def is_rate_limited(self) -> bool:
        """Advisory flag set by any task that saw a 429 for this shop."""
        return bool(self.cache.get(rate_limit_key(self.shop_id)))

    # ===================
    # METADATA
    # ===================

    def get_spreadsheet_info(self, sheet_id: str) -> dict:
        data = self.request("GET", f"{API_BASE_URL}/{sheet_id}")
        sheets = [
            {
                "id": (sheet.get("properties") or {}).get("sheetId"),
                "title": (sheet.get("properties") or {}).get("title", ""),
            }
            for sheet in data.get("sheets", [])
        ]
        return {
            "id": data.get("spreadsheetId", sheet_id),
            "title": (data.get("properties") or {}).get("title", ""),
            "sheets": sheets,
        }

    def get_sheets(self, sheet_id: str) -> list[dict]:
        return self.get_spreadsheet_info(sheet_id)["sheets"]

    def validate_access(self, sheet_id: str) -> bool:
        """True if the connected account can open the spreadsheet."""
        try:
            self.request("GET", f"{API_BASE_URL}/{sheet_id}", params={"fields": "spreadsheetId"})
            return True
        except (AuthFailedError, UpstreamApiError) as e:
            logger.warning("sheets_access_validation_failed", sheet_id=sheet_id, error=str(e))
            return False

    # ===================
    # VALUES
    # ===================

    def _values_url(self, sheet_id: str, range_a1: str) -> str:
        return f"{API_BASE_URL}/{sheet_id}/values/{quote(range_a1, safe='')}"

    def read_range(
        self,
        sheet_id: str,
        range_a1: str,
        page: int = 1,
        page_size: int = 1000
    ) -> SheetPage:
        """
        Read one vertical page of a rectangular range.

        has_more is true when the page came back full.
        """
        _, _, start_row, _, end_row = parse_range(range_a1)
        if end_row is not None and (start_row or 1) + (page - 1) * page_size > end_row:
            return SheetPage(values=[], page=page, page_size=page_size, has_more=False)

        paged = page_range(range_a1, page, page_size)
        data = self.request("GET", self._values_url(sheet_id, paged))
        values = [[str(cell) for cell in row] for row in data.get("values", [])]

        logger.debug("sheets_range_read", sheet_id=sheet_id, range=paged, rows=len(values))
        return SheetPage(
            values=values,
            page=page,
            page_size=page_size,
            has_more=len(values) >= page_size,
        )

    def read_header(self, sheet_id: str, sheet_name: Optional[str]) -> list[str]:
        range_a1 = join_sheet(sheet_name, "1:1")
        data = self.request("GET", self._values_url(sheet_id, range_a1))
        rows = data.get("values") or [[]]
        return [str(cell) for cell in rows[0]] if rows else []

    def write_range(
        self,
        sheet_id: str,
        range_a1: str,
        values: list[list[Any]],
        value_input_option: str = "RAW"
    ) -> list[str]:
        """
        Overwrite a range starting at its top-left cell.

        More than max_rows_per_write rows are split into sequential,
        contiguous sub-writes. Returns the ranges written, in order.
        """
        if not values:
            return []

        sheet, start_col, start_row, end_col, _ = parse_range(range_a1)
        start_row = start_row or 1
        written: list[str] = []

        for offset in range(0, len(values), self.max_rows_per_write):
            batch = values[offset:offset + self.max_rows_per_write]
            first = start_row + offset
            sub_range = build_range(sheet, start_col, first, end_col, first + len(batch) - 1)
            self.request(
                "PUT",
                self._values_url(sheet_id, sub_range),
                json={"range": sub_range, "majorDimension": "ROWS", "values": batch},
                params={"valueInputOption": value_input_option},
            )
            written.append(sub_range)

        logger.info(
            "sheets_range_written",
            shop_id=self.shop_id,
            sheet_id=sheet_id,
            rows=len(values),
            requests=len(written)
        )
        return written

    def batch_write(
        self,
        sheet_id: str,
        items: list[dict],
        value_input_option: str = "RAW"
    ) -> dict:
        """Write several named ranges in one round-trip. Items: {range, values}."""
        payload = {
            "valueInputOption": value_input_option,
            "data": [{"range": item["range"], "values": item["values"]} for item in items],
        }
        return self.request("POST", f"{API_BASE_URL}/{sheet_id}/values:batchUpdate", json=payload)

    def validate_structure(
        self,
        sheet_id: str,
        sheet_name: Optional[str],
        required_columns: list[str]
    ) -> StructureValidation:
        """Match required names against the header row, ignoring case and padding."""
        headers = self.read_header(sheet_id, sheet_name)
        normalized = [h.strip().lower() for h in headers]

        missing: list[str] = []
        column_map: dict[str, str] = {}
        for required in required_columns:
            try:
                index = normalized.index(required.strip().lower())
            except ValueError:
                missing.append(required)
                continue
            column_map[required] = index_to_column(index + 1)

        return StructureValidation(
            valid=not missing,
            missing_columns=missing,
            column_map=column_map,
            headers=headers,
        )
