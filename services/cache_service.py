"""
Shared short-lived state: progress snapshots, previews, import errors,
conflict sets, rate-limit flags and webhook debounce tokens.

Every entry has an explicit TTL and a shop- or run-scoped key. MemoryCache
is process local (tests, single worker); RedisCache is shared between the
API and the Celery workers.
"""

import json
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional, Protocol

import redis
import structlog

from config.settings import settings
from models.sync_run import ProgressSnapshot

logger = structlog.get_logger(__name__)

PROGRESS_TTL = timedelta(hours=2)
PREVIEW_TTL = timedelta(days=7)
IMPORT_ERRORS_TTL = timedelta(days=7)
CONFLICTS_TTL = timedelta(days=7)
RATE_LIMIT_TTL = timedelta(seconds=60)


# ===================
# KEYS
# ===================

def progress_key(run_id: str) -> str:
    return f"sync_progress:{run_id}"


def preview_key(run_id: str) -> str:
    return f"import_preview:{run_id}"


def import_errors_key(run_id: str) -> str:
    return f"import_errors:{run_id}"


def conflicts_key(run_id: str) -> str:
    return f"sync_conflicts:{run_id}"


def rate_limit_key(shop_id: str) -> str:
    return f"sheets_rate_limit:{shop_id}"


def debounce_key(shop_id: str, inventory_item_id: str) -> str:
    return f"webhook_debounce:{shop_id}:{inventory_item_id}"


# ===================
# STORES
# ===================

class CacheStore(Protocol):
    def set(self, key: str, value: Any, ttl: timedelta) -> None: ...

    def get(self, key: str) -> Optional[Any]: ...

    def delete(self, key: str) -> None: ...


class MemoryCache:
    """In-process TTL dict. Values are stored as given."""

    def __init__(self, clock=datetime.now):
        self._cache: dict[str, tuple[datetime, Any]] = {}
        self._clock = clock

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        self._cache[key] = (self._clock() + ttl, value)
        self._cleanup_expired()

    def get(self, key: str) -> Optional[Any]:
        """Returns None if expired/not found."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() > expires_at:
            del self._cache[key]
            return None
        return value

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def _cleanup_expired(self) -> None:
        """Remove all expired entries."""
        now = self._clock()
        expired = [k for k, (exp, _) in self._cache.items() if now > exp]
        for k in expired:
            del self._cache[k]


class RedisCache:
    """JSON values in Redis with SETEX."""

    def __init__(self, client: redis.Redis):
        self.redis = client

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        self.redis.setex(key, ttl, json.dumps(value, default=str))

    def get(self, key: str) -> Optional[Any]:
        raw = self.redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def delete(self, key: str) -> None:
        self.redis.delete(key)


@lru_cache()
def get_cache() -> CacheStore:
    """Cache backend selected by CACHE_BACKEND."""
    if settings.cache_backend == "redis":
        logger.info("cache_backend_selected", backend="redis")
        return RedisCache(redis.from_url(settings.redis_url, decode_responses=True))
    logger.info("cache_backend_selected", backend="memory")
    return MemoryCache()


# ===================
# PROGRESS
# ===================

def store_progress(
    cache: CacheStore,
    run_id: str,
    processed: int,
    total: Optional[int] = None,
    now: Optional[datetime] = None
) -> ProgressSnapshot:
    """Write the polling snapshot for a run."""
    snapshot = ProgressSnapshot.build(processed, total, now or datetime.now(timezone.utc))
    cache.set(progress_key(run_id), snapshot.model_dump(mode="json"), PROGRESS_TTL)
    return snapshot


def load_progress(cache: CacheStore, run_id: str) -> Optional[ProgressSnapshot]:
    data = cache.get(progress_key(run_id))
    if not data:
        return None
    return ProgressSnapshot(**data)
