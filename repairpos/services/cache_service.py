"""
Redis cache for POS read models.

Only derived data is cached (credit summaries, the active stock alert
list); the database stays the source of truth. Any Redis failure turns the
cache off for the rest of the process and callers fall back to loading
from the database.
"""

import logging
import json
from typing import Any, Optional, Callable, Dict
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)

# Config key holding the TTL of each cached module
MODULE_TTL_SETTINGS = {
    'credit': 'CACHE_CREDIT_TTL',
    'stock': 'CACHE_STOCK_TTL',
}


def _encode(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return {"__decimal__": str(obj)}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _decode(dct: Dict[str, Any]) -> Any:
    if "__decimal__" in dct:
        return Decimal(dct["__decimal__"])
    return dct


class CacheService:
    """
    Redis-backed cache, keyed ``{prefix}:{module}:{key}``.
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self.enabled = False
        self.prefix = 'repairpos'
        self.default_ttl = 60
        self.ttls: Dict[str, int] = {}

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'repairpos')
        self.default_ttl = int(app.config.get('CACHE_DEFAULT_TTL', 60))
        self.ttls = {
            module: int(app.config.get(setting, self.default_ttl))
            for module, setting in MODULE_TTL_SETTINGS.items()
        }

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            self.enabled = True
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unavailable ({e}), running without cache")
            self.client = None

    def _disable(self, operation: str, error: Exception) -> None:
        logger.warning(f"[CACHE] {operation} failed ({error}), cache turned off")
        self.enabled = False

    def key_for(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def ttl_for(self, module: str) -> int:
        return self.ttls.get(module, self.default_ttl)

    def get(self, module: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(self.key_for(module, key))
        except RedisError as e:
            self._disable('GET', e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw, object_hook=_decode)
        except ValueError:
            logger.warning(f"[CACHE] Dropping unreadable entry {self.key_for(module, key)}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            payload = json.dumps(value, default=_encode)
        except TypeError as e:
            logger.warning(f"[CACHE] Value for {module}:{key} not cacheable: {e}")
            return False
        try:
            self.client.setex(self.key_for(module, key), ttl or self.ttl_for(module), payload)
            return True
        except RedisError as e:
            self._disable('SET', e)
            return False

    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or load it and store it for the module TTL."""
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(module, key, value, ttl)
        return value

    def delete(self, module: str, key: str) -> None:
        if not self.enabled:
            return
        try:
            self.client.delete(self.key_for(module, key))
        except RedisError as e:
            self._disable('DELETE', e)

    def invalidate_module(self, module: str) -> int:
        """Delete every key of a module. Returns how many were removed."""
        if not self.enabled:
            return 0
        pattern = self.key_for(module, '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            self._disable('INVALIDATE', e)
            return 0
        if keys:
            logger.info(f"[CACHE] Invalidated {pattern} ({len(keys)} keys)")
        return len(keys)


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service


def invalidate(module: str, key: Optional[str] = None) -> None:
    """Drop cached entries after a write; does nothing when the cache is off."""
    try:
        cache = get_cache()
    except RuntimeError:
        return
    if key is None:
        cache.invalidate_module(module)
    else:
        cache.delete(module, key)
