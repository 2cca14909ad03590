"""
Google Sheets connection API routes.

OAuth flow: /connect returns the consent URL carrying an encrypted state;
Google redirects to /callback, which stores the encrypted tokens and sends
the user back to where they started.
"""

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse, RedirectResponse
import structlog

from integrations.google_oauth import GoogleOAuthClient, decode_state, encode_state
from integrations.sheets_client import SheetsClient
from models.spreadsheet_connection import (
    ConnectionStatusResponse,
    SelectSheetRequest,
    StructureValidation,
    StructureValidationRequest,
)
from services.cache_service import get_cache
from services.connection_service import extract_sheet_id, get_connection_service
from exceptions import AppError, SheetsNotConnectedError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/google-sheets", tags=["Google Sheets"])


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


def _with_query(url: str, **params) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


# ===================
# OAUTH
# ===================

@router.get("/connect")
def connect(
    shop_id: str = Header(..., alias="X-Shop-Id"),
    return_url: Optional[str] = Query(None, description="Where to send the user after consent")
):
    """Consent URL for the shop."""
    try:
        state = encode_state(shop_id, return_url)
        return {"authorization_url": GoogleOAuthClient().build_authorization_url(state)}
    except Exception as e:
        return handle_error(e)


@router.get("/callback")
def callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None)
):
    """Google redirect target: exchange the code and store the tokens."""
    try:
        payload = decode_state(state)
        return_url = payload.get("return_url") or "/"

        if error or not code:
            logger.warning("google_oauth_denied", shop_id=payload["shop_id"], error=error)
            return RedirectResponse(_with_query(return_url, error=error or "missing_code"))

        tokens = GoogleOAuthClient().exchange_code(code)
        get_connection_service().save_tokens(
            payload["shop_id"],
            tokens["access_token"],
            tokens.get("refresh_token"),
        )
        logger.info("google_sheets_connected", shop_id=payload["shop_id"])
        return RedirectResponse(_with_query(return_url, connected="true"))
    except Exception as e:
        return handle_error(e)


# ===================
# CONNECTION
# ===================

@router.get("/status", response_model=ConnectionStatusResponse)
def status(shop_id: str = Header(..., alias="X-Shop-Id")):
    try:
        connection = get_connection_service().get(shop_id)
        if connection is None:
            return ConnectionStatusResponse(connected=False)
        return ConnectionStatusResponse(
            connected=connection.has_valid_tokens,
            sheet_id=connection.sheet_id,
            sheet_url=connection.sheet_url,
            sheet_name=connection.sheet_name,
            last_synced_at=connection.last_synced_at,
        )
    except Exception as e:
        return handle_error(e)


@router.post("/select-sheet", response_model=ConnectionStatusResponse)
def select_sheet(data: SelectSheetRequest, shop_id: str = Header(..., alias="X-Shop-Id")):
    """
    Pick the spreadsheet (by URL) and tab to sync with.

    Nothing is stored unless the connected account can open the spreadsheet
    and the tab exists.
    """
    try:
        connections = get_connection_service()
        connection = connections.get(shop_id)
        if connection is None:
            raise SheetsNotConnectedError(shop_id)
        sheet_id = extract_sheet_id(data.sheet_url)

        client = SheetsClient(connection, token_store=connections, cache=get_cache())
        if not client.validate_access(sheet_id):
            raise ValidationError(
                "The connected Google account cannot open this spreadsheet",
                code="SHEET_NOT_ACCESSIBLE",
                details={"sheet_id": sheet_id}
            )
        tabs = [sheet["title"] for sheet in client.get_sheets(sheet_id)]
        if data.sheet_name not in tabs:
            raise ValidationError(
                f"Sheet tab '{data.sheet_name}' not found",
                code="SHEET_TAB_NOT_FOUND",
                details={"available": tabs}
            )

        connection = connections.select_sheet(shop_id, data.sheet_url, data.sheet_name)
        return ConnectionStatusResponse(
            connected=connection.has_valid_tokens,
            sheet_id=connection.sheet_id,
            sheet_url=connection.sheet_url,
            sheet_name=connection.sheet_name,
            last_synced_at=connection.last_synced_at,
        )
    except Exception as e:
        return handle_error(e)


@router.post("/disconnect")
def disconnect(shop_id: str = Header(..., alias="X-Shop-Id")):
    try:
        removed = get_connection_service().disconnect(shop_id)
        return {"success": True, "disconnected": removed}
    except Exception as e:
        return handle_error(e)


@router.post("/validate-structure", response_model=StructureValidation)
def validate_structure(
    data: StructureValidationRequest,
    shop_id: str = Header(..., alias="X-Shop-Id")
):
    """Check the header row contains the required column names."""
    try:
        connections = get_connection_service()
        connection = connections.require(shop_id)
        client = SheetsClient(connection, token_store=connections, cache=get_cache())
        return client.validate_structure(
            connection.sheet_id,
            data.sheet_name or connection.sheet_name,
            data.required_columns,
        )
    except Exception as e:
        return handle_error(e)
