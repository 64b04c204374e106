"""Pipeline cache with tiered TTLs and priority-aware LRU eviction.

The cache is an explicit component: create one per process (or per run)
and pass it to the stages that need it. Nothing here keeps module-level
state.
"""

import asyncio
import fnmatch
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

from .config import Settings
from .logging import get_context_logger
from .models import Category, RecordKind

logger = get_context_logger(__name__)


# Cache TTL configurations (in seconds)
CACHE_TTL = {
    RecordKind.PROJECT.value: 3600,  # 1 hour for project data
    RecordKind.FUNDING_PROGRAM.value: 7200,  # 2 hours for funding programs
    RecordKind.RESOURCE.value: 86400,  # 24 hours for resources
    "score": 1800,  # 30 minutes for scorer results
    "default": 3600,
}

KIND_BY_CATEGORY = {
    Category.PROJECTS: RecordKind.PROJECT,
    Category.FUNDING_PROGRAMS: RecordKind.FUNDING_PROGRAM,
    Category.RESOURCES: RecordKind.RESOURCE,
}

# Cache key prefixes
KEY_PREFIX = "cass:"


class CachePriority(str, Enum):
    """Eviction priority; lower priorities are evicted first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(CachePriority).index(self)


class CacheStats(BaseModel):
    """Hit/miss/eviction counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def ttl_for(kind: RecordKind | Category | str | None) -> int:
    """TTL in seconds for a record kind, category or named tier."""
    if isinstance(kind, Category):
        kind = KIND_BY_CATEGORY[kind]
    if isinstance(kind, RecordKind):
        kind = kind.value
    return CACHE_TTL.get(kind or "default", CACHE_TTL["default"])


class CacheBackend:
    """Abstract cache backend interface."""

    async def get(self, key: str) -> Any | None:
        """Get value from cache."""
        raise NotImplementedError

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        """Get several values; missing keys are left out of the result."""
        values = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                values[key] = value
        return values

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        priority: CachePriority = CachePriority.MEDIUM,
        tags: set[str] | None = None,
    ) -> bool:
        """Set value in cache."""
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        raise NotImplementedError

    async def clear_by_tag(self, tag: str) -> int:
        """Delete all entries carrying a tag."""
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        return await self.get(key) is not None

    async def stats(self) -> CacheStats:
        """Current counters."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close the cache connection."""
        pass


@dataclass
class _Entry:
    value: Any
    expires_at: float | None
    priority: CachePriority
    tags: set[str] = field(default_factory=set)


class PipelineCache(CacheBackend):
    """Bounded in-process cache.

    When full, evicts the least recently used entry of the lowest priority
    present: low before medium before high before critical.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if entry.expires_at is not None and self._clock() > entry.expires_at:
                del self._entries[key]
                self._stats.misses += 1
                return None

            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        priority: CachePriority = CachePriority.MEDIUM,
        tags: set[str] | None = None,
    ) -> bool:
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._evict()

            expires_at = self._clock() + ttl if ttl else None
            self._entries[key] = _Entry(value, expires_at, priority, set(tags or ()))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
                return True
            return False

    async def clear_by_tag(self, tag: str) -> int:
        async with self._lock:
            keys = [key for key, entry in self._entries.items() if tag in entry.tags]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            keys = [key for key in self._entries if fnmatch.fnmatch(key, pattern)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def stats(self) -> CacheStats:
        async with self._lock:
            return self._stats.model_copy(update={"size": len(self._entries)})

    def _evict(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at is not None and now > entry.expires_at
        ]
        if expired:
            for key in expired:
                del self._entries[key]
            self._stats.evictions += len(expired)
            return

        # OrderedDict iterates least recently used first
        victim = min(
            self._entries.items(),
            key=lambda item: item[1].priority.rank,
        )[0]
        del self._entries[victim]
        self._stats.evictions += 1


class RedisCache(CacheBackend):
    """Redis-based cache for multi-process deployments.

    Errors are logged and treated as misses.
    """

    def __init__(self, redis_client):
        self._redis = redis_client
        self._stats = CacheStats()

    async def get(self, key: str) -> Any | None:
        try:
            data = await self._redis.get(key)
        except Exception as e:
            logger.warning(f"Redis cache get error: {e}")
            self._stats.misses += 1
            return None
        if data:
            self._stats.hits += 1
            return json.loads(data)
        self._stats.misses += 1
        return None

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        """Fetch every key in one MGET round trip."""
        if not keys:
            return {}
        try:
            found = await self._redis.mget(keys)
        except Exception as e:
            logger.warning(f"Redis cache mget error: {e}")
            self._stats.misses += len(keys)
            return {}

        values = {}
        for key, data in zip(keys, found):
            if data:
                values[key] = json.loads(data)
        self._stats.hits += len(values)
        self._stats.misses += len(keys) - len(values)
        return values

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        priority: CachePriority = CachePriority.MEDIUM,
        tags: set[str] | None = None,
    ) -> bool:
        # Redis applies its own eviction policy; priority is not stored
        try:
            data = json.dumps(value, default=str)
            if ttl:
                await self._redis.setex(key, ttl, data)
            else:
                await self._redis.set(key, data)
            for tag in tags or ():
                await self._redis.sadd(tag_key(tag), key)
            return True
        except Exception as e:
            logger.warning(f"Redis cache set error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            result = await self._redis.delete(key)
            return result > 0
        except Exception as e:
            logger.warning(f"Redis cache delete error: {e}")
            return False

    async def clear_by_tag(self, tag: str) -> int:
        try:
            keys = await self._redis.smembers(tag_key(tag))
            deleted = await self._redis.delete(*keys) if keys else 0
            await self._redis.delete(tag_key(tag))
            return deleted
        except Exception as e:
            logger.warning(f"Redis cache clear by tag error: {e}")
            return 0

    async def stats(self) -> CacheStats:
        return self._stats.model_copy()

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except Exception as e:
            logger.warning(f"Redis cache close error: {e}")


async def create_cache(settings: Settings) -> CacheBackend:
    """Create the cache backend for the given settings.

    Uses Redis when a URL is configured and reachable, otherwise the
    in-process cache.
    """
    if settings.redis_url:
        try:
            import redis.asyncio as redis

            client = redis.from_url(settings.redis_url)
            await client.ping()
            logger.info("Using Redis cache backend")
            return RedisCache(client)
        except Exception as e:
            logger.warning(f"Redis unavailable for caching: {e}")

    logger.info("Using in-memory cache backend")
    return PipelineCache(max_entries=settings.cache_max_entries)


# =========================
# Cache Key Builders
# =========================


def existence_key(category: Category | str, value: str) -> str:
    """Build cache key for a known-existing identifying value."""
    return f"{KEY_PREFIX}exists:{Category(category).value}:{value}"


def score_key(entity_id: str) -> str:
    """Build cache key for a scorer result."""
    return f"{KEY_PREFIX}score:{entity_id}"


def tag_key(tag: str) -> str:
    """Build the Redis set key holding members of a tag."""
    return f"{KEY_PREFIX}tag:{tag}"
