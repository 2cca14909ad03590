"""
Google Sheets connection schemas.

Token columns hold Fernet ciphertext; they are decrypted only in memory by
the services that need them.
"""

from pydantic import Field
from typing import Optional
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class SpreadsheetConnection(BaseSchema, TimestampMixin):
    """One row of google_sheets_connections (one per shop)."""

    id: Optional[str] = None
    shop_id: str = Field(..., description="Owning shop (unique)")
    sheet_id: Optional[str] = Field(None, description="Spreadsheet id")
    sheet_url: Optional[str] = None
    sheet_name: str = Field("Sheet1", description="Tab used for sync")
    access_token: Optional[str] = Field(None, description="Encrypted access token")
    refresh_token: Optional[str] = Field(None, description="Encrypted refresh token")
    last_synced_at: Optional[datetime] = None

    @property
    def has_valid_tokens(self) -> bool:
        return bool(self.refresh_token)

    @property
    def is_ready(self) -> bool:
        """Tokens present and a sheet selected."""
        return self.has_valid_tokens and bool(self.sheet_id)


class ConnectionStatusResponse(BaseSchema):
    """Public view of a connection, never includes tokens."""

    connected: bool
    sheet_id: Optional[str] = None
    sheet_url: Optional[str] = None
    sheet_name: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class SelectSheetRequest(BaseSchema):
    """Choose the spreadsheet (and tab) to sync with."""

    sheet_url: str = Field(..., min_length=10)
    sheet_name: str = Field("Sheet1", min_length=1)


class StructureValidationRequest(BaseSchema):
    """Columns the header row must contain."""

    sheet_name: Optional[str] = None
    required_columns: list[str] = Field(..., min_length=1)


class StructureValidation(BaseSchema):
    """Result of matching the header row against required columns."""

    valid: bool
    missing_columns: list[str] = Field(default_factory=list)
    column_map: dict[str, str] = Field(default_factory=dict)
    headers: list[str] = Field(default_factory=list)


class SheetPage(BaseSchema):
    """One vertical page of a range read."""

    values: list[list[str]] = Field(default_factory=list)
    page: int = 1
    page_size: int = 1000
    has_more: bool = False
