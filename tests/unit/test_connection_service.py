"""
Unit tests for ConnectionService.

Run: pytest tests/unit/test_connection_service.py -v
"""

import pytest

from exceptions import SheetsNotConnectedError, ValidationError
from services.connection_service import extract_sheet_id, get_connection_service
from tests.factories import ConnectionFactory
from utils.crypto import decrypt_token


class TestExtractSheetId:
    def test_from_edit_url(self):
        url = "https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0"

        assert extract_sheet_id(url) == "1AbC-d_9"

    def test_invalid_url(self):
        with pytest.raises(ValidationError) as exc:
            extract_sheet_id("https://example.com/not-a-sheet")

        assert exc.value.code == "INVALID_SHEET_URL"


class TestRequire:
    """Tests for ConnectionService.require()"""

    def test_ready_connection(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])

        connection = get_connection_service().require("shop-1")

        assert connection.sheet_id == "sheet-abc"

    def test_missing_connection(self, mock_db):
        with pytest.raises(SheetsNotConnectedError):
            get_connection_service().require("shop-1")

    def test_no_sheet_selected(self, mock_db, mock_supabase):
        """Should not count a connection without a sheet as ready."""
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create(sheet_id=None)])

        with pytest.raises(SheetsNotConnectedError):
            get_connection_service().require("shop-1")

    def test_list_ready(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("google_sheets_connections", [
            ConnectionFactory.create(shop_id="shop-1"),
            ConnectionFactory.create(shop_id="shop-2", refresh_token=None),
            ConnectionFactory.create(shop_id="shop-3", sheet_id=None),
        ])

        assert [c.shop_id for c in get_connection_service().list_ready()] == ["shop-1"]


class TestSaveTokens:
    """Tests for ConnectionService.save_tokens()"""

    def test_creates_connection_with_encrypted_tokens(self, mock_db, mock_supabase):
        connection = get_connection_service().save_tokens("shop-1", "at-1", "rt-1")

        stored = mock_supabase.rows("google_sheets_connections")[0]
        assert stored["access_token"] != "at-1"
        assert decrypt_token(connection.access_token) == "at-1"
        assert decrypt_token(connection.refresh_token) == "rt-1"

    def test_keeps_refresh_token_when_not_rotated(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])

        connection = get_connection_service().save_tokens("shop-1", "at-2")

        assert decrypt_token(connection.access_token) == "at-2"
        assert decrypt_token(connection.refresh_token) == "refresh-token"
        assert len(mock_supabase.rows("google_sheets_connections")) == 1


class TestSelectSheet:
    def test_stores_sheet_id(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create(sheet_id=None)])

        connection = get_connection_service().select_sheet(
            "shop-1", "https://docs.google.com/spreadsheets/d/new-sheet/edit", "Products"
        )

        assert connection.sheet_id == "new-sheet"
        assert connection.sheet_name == "Products"
        assert connection.is_ready


class TestDisconnect:
    def test_deletes_row(self, mock_db, mock_supabase):
        mock_supabase.set_table_data("google_sheets_connections", [ConnectionFactory.create()])
        service = get_connection_service()

        assert service.disconnect("shop-1") is True
        assert service.get("shop-1") is None

    def test_nothing_to_delete(self, mock_db):
        assert get_connection_service().disconnect("shop-1") is False
