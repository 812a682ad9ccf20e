"""
Read-through cache for the featured products listing.

Backed by Redis when it is enabled, otherwise by a process-local store that
exposes the same ``get``/``set``/``delete`` calls.
"""
import json
import threading
import time
from typing import Any, Callable, List, Optional

import redis
import structlog
from fastapi import Request

from config import Settings

logger = structlog.get_logger(__name__)

FEATURED_PRODUCTS_KEY = "featured_products"


class InMemoryStore:
    def __init__(self):
        self._data = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        expires_at = time.monotonic() + ex if ex else None
        with self._lock:
            self._data[key] = (value, expires_at)
        return True

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._data.pop(key, None) is not None else 0

    def close(self) -> None:
        pass


class FeaturedProductsCache:
    def __init__(self, store, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def get(self) -> Optional[List[dict]]:
        raw = self.store.get(FEATURED_PRODUCTS_KEY)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, products: List[dict]) -> None:
        self.store.set(FEATURED_PRODUCTS_KEY, json.dumps(products), ex=self.ttl_seconds)

    def get_or_load(self, loader: Callable[[], List[dict]]) -> List[dict]:
        cached = self.get()
        if cached is not None:
            return cached
        products = loader()
        if products:
            self.set(products)
        return products

    def refresh(self, loader: Callable[[], List[dict]]) -> None:
        """Overwrite the cached listing; failures are logged, never raised."""
        try:
            self.set(loader())
        except Exception:
            logger.exception("featured_cache_refresh_failed")


def build_store(settings: Settings) -> Any:
    if settings.use_redis and settings.redis_url:
        logger.info("featured_cache_backend", backend="redis")
        return redis.Redis.from_url(settings.redis_url)
    if settings.use_redis:
        logger.warning("redis_url_missing_using_memory_store")
    else:
        logger.info("featured_cache_backend", backend="memory")
    return InMemoryStore()


def get_featured_cache(request: Request) -> FeaturedProductsCache:
    return request.app.state.featured_cache
