"""
Google Sheets connection service.

Owns google_sheets_connections (one row per shop). Tokens are encrypted
before they reach the table.
"""

import re
from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.spreadsheet_connection import SpreadsheetConnection
from exceptions import DatabaseError, SheetsNotConnectedError, ValidationError
from utils.crypto import encrypt_token

logger = structlog.get_logger(__name__)

_SHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


def extract_sheet_id(sheet_url: str) -> str:
    """
    Pull the spreadsheet id out of a Google Sheets URL.

    Raises:
        ValidationError: If the URL is not a spreadsheet URL
    """
    match = _SHEET_URL_RE.search(sheet_url)
    if not match:
        raise ValidationError(
            "Invalid Google Sheets URL",
            code="INVALID_SHEET_URL",
            details={"sheet_url": sheet_url}
        )
    return match.group(1)


class ConnectionService:
    """Connection persistence; also the token store for SheetsClient."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "google_sheets_connections"

    def get(self, shop_id: str) -> Optional[SpreadsheetConnection]:
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("shop_id", shop_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_connection_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None
        return SpreadsheetConnection(**result.data[0])

    def require(self, shop_id: str) -> SpreadsheetConnection:
        """
        Connection with tokens and a selected sheet.

        Raises:
            SheetsNotConnectedError: Otherwise
        """
        connection = self.get(shop_id)
        if connection is None or not connection.is_ready:
            raise SheetsNotConnectedError(shop_id)
        return connection

    def list_ready(self) -> list[SpreadsheetConnection]:
        """Connections with a refresh token and a sheet, for scheduled exports."""
        try:
            result = self.db.table(self.table).select("*").execute()
        except Exception as e:
            logger.error("list_connections_failed", error=str(e))
            raise DatabaseError("select", str(e))
        connections = [SpreadsheetConnection(**row) for row in result.data]
        return [c for c in connections if c.is_ready]

    def _upsert(self, shop_id: str, data: dict) -> SpreadsheetConnection:
        now = datetime.now(timezone.utc).isoformat()
        data = {**data, "updated_at": now}
        try:
            if self.get(shop_id) is None:
                result = (
                    self.db.table(self.table)
                    .insert({"shop_id": shop_id, "created_at": now, **data})
                    .execute()
                )
            else:
                result = (
                    self.db.table(self.table)
                    .update(data)
                    .eq("shop_id", shop_id)
                    .execute()
                )
            return SpreadsheetConnection(**result.data[0])

        except DatabaseError:
            raise
        except Exception as e:
            logger.error("save_connection_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("upsert", str(e))

    def save_tokens(
        self,
        shop_id: str,
        access_token: str,
        refresh_token: Optional[str] = None
    ) -> SpreadsheetConnection:
        """Encrypt and store tokens; a missing refresh token keeps the stored one."""
        data = {"access_token": encrypt_token(access_token)}
        if refresh_token:
            data["refresh_token"] = encrypt_token(refresh_token)
        connection = self._upsert(shop_id, data)
        logger.info("connection_tokens_saved", shop_id=shop_id, refresh_rotated=bool(refresh_token))
        return connection

    def select_sheet(self, shop_id: str, sheet_url: str, sheet_name: str = "Sheet1") -> SpreadsheetConnection:
        sheet_id = extract_sheet_id(sheet_url)
        connection = self._upsert(shop_id, {
            "sheet_id": sheet_id,
            "sheet_url": sheet_url,
            "sheet_name": sheet_name,
        })
        logger.info("connection_sheet_selected", shop_id=shop_id, sheet_id=sheet_id)
        return connection

    def touch_last_synced(self, shop_id: str) -> None:
        try:
            (
                self.db.table(self.table)
                .update({"last_synced_at": datetime.now(timezone.utc).isoformat()})
                .eq("shop_id", shop_id)
                .execute()
            )
        except Exception as e:
            logger.error("touch_last_synced_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("update", str(e))

    def disconnect(self, shop_id: str) -> bool:
        try:
            result = self.db.table(self.table).delete().eq("shop_id", shop_id).execute()
        except Exception as e:
            logger.error("disconnect_failed", shop_id=shop_id, error=str(e))
            raise DatabaseError("delete", str(e))
        logger.info("connection_deleted", shop_id=shop_id)
        return bool(result.data)


# Singleton instance
_connection_service: Optional[ConnectionService] = None


def get_connection_service() -> ConnectionService:
    """Get or create ConnectionService instance."""
    global _connection_service
    if _connection_service is None:
        _connection_service = ConnectionService()
    return _connection_service
