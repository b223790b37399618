"""
Cache Service - two-tier read-through / write-through cache for search results.

L1 is an in-process, cost-bounded TTL cache (cachetools) shared by every
worker thread. L2 is an optional Redis instance shared across processes.
Values are JSON-serialized once and stored as bytes in both tiers.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis
from cachetools import TTLCache

from services.errors import CacheTransientError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_COST = 10_000_000  # bytes of serialized payload held in L1
DEFAULT_REDIS_TIMEOUT = 2.0


def serialize(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, separators=(',', ':')).encode('utf-8')


def deserialize(payload: bytes) -> Any:
    return json.loads(payload)


class CacheTier:
    """Interface shared by the local and remote tiers."""

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set(self, key: str, payload: bytes):
        raise NotImplementedError

    def close(self):
        pass


class LocalCacheTier(CacheTier):
    """
    In-process tier bounded by the total size of the stored payloads.

    Entries expire after ``ttl`` seconds; when the byte limit is exceeded
    the least recently used entries are evicted. A payload larger than the
    whole limit is not admitted.
    """

    def __init__(self, max_cost: int, ttl: float, timer: Callable[[], float] = time.monotonic):
        if max_cost <= 0:
            raise ValueError(f"L1 cache max cost must be positive, got {max_cost}")
        if ttl <= 0:
            raise ValueError(f"L1 cache TTL must be positive, got {ttl}")

        self.max_cost = max_cost
        self.ttl = ttl
        self._entries = TTLCache(maxsize=max_cost, ttl=ttl, timer=timer, getsizeof=len)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, payload: bytes) -> bool:
        """Store ``payload``; returns False when it was not admitted."""
        with self._lock:
            try:
                self._entries[key] = payload
            except ValueError:
                logger.debug(f"cache L1 rejected {key}: {len(payload)} bytes exceeds {self.max_cost}")
                return False
        return True

    @property
    def cost(self) -> int:
        """Current total size of the cached payloads."""
        with self._lock:
            return self._entries.currsize

    def __len__(self):
        with self._lock:
            return len(self._entries)


class RedisCacheTier(CacheTier):
    """Shared tier backed by Redis; errors propagate as redis exceptions."""

    def __init__(self, client: redis.Redis, ttl: int):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int, timeout: float = DEFAULT_REDIS_TIMEOUT) -> 'RedisCacheTier':
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout
        )
        return cls(client, ttl)

    def ping(self) -> bool:
        return bool(self.client.ping())

    def get(self, key: str) -> Optional[bytes]:
        return self.client.get(key)

    def set(self, key: str, payload: bytes):
        self.client.set(key, payload, ex=self.ttl)

    def close(self):
        self.client.close()


class TieredCache:
    """
    L1 + optional L2 cache.

    Usage:
        hit, value = cache.get(key)
        if not hit:
            value = compute()
            cache.set(key, value)
    """

    def __init__(self, local: LocalCacheTier, remote: Optional[CacheTier] = None):
        self.local = local
        self.remote = remote

    @property
    def enabled(self) -> bool:
        return True

    def get(self, key: str) -> Tuple[bool, Any]:
        """
        Look ``key`` up in L1, then L2.

        An L2 hit is written back to L1 with the configured TTL.

        Returns:
            (hit, value) - value is None on a miss

        Raises:
            CacheTransientError: If L2 fails for any reason other than a missing key
        """
        payload = self.local.get(key)
        if payload is not None:
            logger.debug(f"cache hit L1: {key}")
            return True, deserialize(payload)

        if self.remote is None:
            return False, None

        try:
            payload = self.remote.get(key)
        except redis.RedisError as e:
            raise CacheTransientError(f"cache L2 read failed: {e}", key=key) from e

        if payload is None:
            return False, None

        try:
            value = deserialize(payload)
        except ValueError as e:
            raise CacheTransientError(f"cache L2 payload is not valid JSON: {e}", key=key) from e

        self.local.set(key, payload)
        logger.debug(f"cache hit L2: {key}")
        return True, value

    def set(self, key: str, value: Any):
        """
        Write ``value`` to L2 (if configured) and then to L1.

        An L2 failure is logged and does not fail the call.
        """
        payload = serialize(value)

        if self.remote is not None:
            try:
                self.remote.set(key, payload)
                logger.debug(f"cache set L2: {key}")
            except redis.RedisError as e:
                logger.warning(f"Failed to set redis cache for {key}: {e}")

        self.local.set(key, payload)
        logger.debug(f"cache set L1: {key} ({len(payload)} bytes)")

    def describe(self) -> Dict[str, str]:
        """Tier status for health checks."""
        return {
            'l1': f'enabled ({self.local.cost}/{self.local.max_cost} bytes)',
            'l2': 'connected' if self.remote is not None else 'disabled',
        }

    def close(self):
        """Release the Redis connection pool (L1 needs no cleanup)."""
        if self.remote is not None:
            self.remote.close()


class NullCache:
    """Stand-in used when caching is not configured: always misses, never stores."""

    @property
    def enabled(self) -> bool:
        return False

    def get(self, key: str) -> Tuple[bool, Any]:
        return False, None

    def set(self, key: str, value: Any):
        pass

    def describe(self) -> Dict[str, str]:
        return {'l1': 'disabled', 'l2': 'disabled'}

    def close(self):
        pass


def build_cache(
    enabled: bool = True,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    max_cost: int = DEFAULT_MAX_COST,
    redis_url: Optional[str] = None,
    redis_timeout: float = DEFAULT_REDIS_TIMEOUT
):
    """
    Build the process-wide cache.

    Args:
        enabled: False returns a NullCache
        ttl_seconds: TTL shared by both tiers (non-positive falls back to 300s)
        max_cost: L1 size limit in bytes
        redis_url: Enables L2 when set
        redis_timeout: Socket / connect timeout for Redis calls

    Returns:
        TieredCache or NullCache

    Raises:
        ValueError: If the L1 configuration is invalid
    """
    if not enabled:
        logger.info("Search cache disabled")
        return NullCache()

    if ttl_seconds <= 0:
        ttl_seconds = DEFAULT_TTL_SECONDS

    local = LocalCacheTier(max_cost=max_cost, ttl=ttl_seconds)

    remote = None
    if redis_url:
        try:
            remote = RedisCacheTier.from_url(redis_url, ttl=ttl_seconds, timeout=redis_timeout)
            remote.ping()
            logger.info(f"Search cache L2 enabled: {redis_url.split('@')[-1]}")
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis unavailable, disabling L2 cache: {e}")
            if remote is not None:
                remote.close()
            remote = None

    logger.info(f"Search cache L1 enabled: max_cost={max_cost} bytes, ttl={ttl_seconds}s")
    return TieredCache(local, remote)
