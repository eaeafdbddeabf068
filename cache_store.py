"""
Proxy Cache Store - Size-bounded, time-to-live storage for resolved video info
"""
import logging
import time
from typing import Callable, Optional, Protocol, Tuple

from cachetools import TLRUCache
from pydantic import ValidationError
import redis.asyncio as redis

from config import ProxyConfig, ProxySettings
from models import CacheEntry, Shape

logger = logging.getLogger(__name__)


def cache_key(video_id: str, shape: Shape) -> str:
    """``{videoId}-{shape}``; the two shapes never share a key"""
    return f"{video_id}-{Shape(shape).value}"


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[CacheEntry]: ...

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[float] = None) -> None: ...

    async def close(self) -> None: ...


class MemoryCacheStore:
    """
    In-process store: least-recently-used eviction past ``max_size`` and
    per-entry expiry. Single-key operations never await, so they are atomic
    with respect to other requests on the event loop.
    """

    def __init__(
        self,
        max_size: int = ProxyConfig.DEFAULT_MAX_SIZE,
        default_ttl: float = ProxyConfig.CACHE_TTL,
        timer: Callable[[], float] = time.monotonic
    ):
        self.default_ttl = default_ttl
        self._cache: TLRUCache = TLRUCache(maxsize=max_size, ttu=self._time_to_use, timer=timer)

    @staticmethod
    def _time_to_use(_key: str, value: Tuple[CacheEntry, float], now: float) -> float:
        return now + value[1]

    async def get(self, key: str) -> Optional[CacheEntry]:
        item = self._cache.get(key)
        if item is None:
            return None
        return item[0]

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[float] = None) -> None:
        self._cache[key] = (entry, self.default_ttl if ttl is None else ttl)

    def __len__(self) -> int:
        return len(self._cache)

    async def close(self) -> None:
        self._cache.clear()


class RedisCacheStore:
    """
    External store for KEYV_ADDRESS. Entries travel as CacheEntry JSON and
    expire through Redis itself; size is bounded by the server's eviction policy.
    """

    def __init__(
        self,
        client: "redis.Redis",
        namespace: str = ProxyConfig.KEYV_NAMESPACE,
        default_ttl: float = ProxyConfig.CACHE_TTL
    ):
        self.client = client
        self.namespace = namespace
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, address: str, **kwargs) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(address), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[Cache] Dropping unreadable entry {key}: {e}")
            return None

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[float] = None) -> None:
        seconds = self.default_ttl if ttl is None else ttl
        await self.client.set(self._key(key), entry.model_dump_json(), ex=max(1, int(seconds)))

    async def close(self) -> None:
        await self.client.aclose()


def create_cache_store(settings: ProxySettings) -> CacheStore:
    """Pick the backend: Redis when KEYV_ADDRESS is set, else in-process"""
    if settings.keyv_address:
        logger.info("[Cache] Using external Redis store")
        return RedisCacheStore.from_url(settings.keyv_address)

    logger.info(f"[Cache] Using in-process store (max {settings.keyv_max_size} entries)")
    return MemoryCacheStore(max_size=settings.keyv_max_size)
