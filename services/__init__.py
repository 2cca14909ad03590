"""
Business logic services.

Each service handles one domain area. The orchestrator and the export /
import phases are imported from their own modules (they depend on the
integrations, which depend on the cache service below).
"""

from services.cache_service import CacheStore, MemoryCache, RedisCache, get_cache
from services.sync_run_service import SyncRunService, get_sync_run_service
from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from services.connection_service import ConnectionService, get_connection_service
from services.shop_service import ShopService, get_shop_service
from services.notification_service import Milestone, NotificationService, get_notification_service
from services.field_registry import REGISTRY, FieldRegistry, FieldSpec
from services.transformer_service import DataTransformer

__all__ = [
    "CacheStore",
    "MemoryCache",
    "RedisCache",
    "get_cache",
    "SyncRunService",
    "get_sync_run_service",
    "FieldMappingService",
    "get_field_mapping_service",
    "ConnectionService",
    "get_connection_service",
    "ShopService",
    "get_shop_service",
    "Milestone",
    "NotificationService",
    "get_notification_service",
    "REGISTRY",
    "FieldRegistry",
    "FieldSpec",
    "DataTransformer",
]
