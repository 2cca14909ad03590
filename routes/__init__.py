"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.sync import router as sync_router
from routes.mappings import router as mappings_router
from routes.google_sheets import router as google_sheets_router
from routes.webhooks import router as webhooks_router

__all__ = [
    "sync_router",
    "mappings_router",
    "google_sheets_router",
    "webhooks_router",
]
