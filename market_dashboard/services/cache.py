# market_dashboard/services/cache.py
import fnmatch
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

ACTIVE_SIGNALS = "active_signals"
SEASONALITY = "seasonality"


class MemoryBackend:
    """In-process backend with the same coroutine interface as RedisClient."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}

    async def get_cached(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set_cached(self, key: str, value, expire: int = 300):
        self._data[key] = (self._clock() + expire, value)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del self._data[key]
        return len(keys)


class ReadThroughCache:
    """Read-through cache keyed by (pair, timeframe, kind).

    Backend failures are logged and treated as misses so a broken cache
    never blocks a request.
    """

    def __init__(self, backend=None, ttl_seconds: int = 300, prefix: str = "md"):
        self.backend = backend if backend is not None else MemoryBackend()
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def key(self, kind: str, pair: Optional[str] = None, timeframe: Optional[str] = None) -> str:
        return f"{self.prefix}:{kind}:{pair or 'any'}:{timeframe or 'any'}"

    async def get(self, kind: str, pair: Optional[str] = None, timeframe: Optional[str] = None):
        try:
            return await self.backend.get_cached(self.key(kind, pair, timeframe))
        except Exception as e:
            logger.warning(f"Cache read error: {e}. Continuing without cache.")
            return None

    async def set(self, kind: str, value, pair: Optional[str] = None, timeframe: Optional[str] = None):
        try:
            await self.backend.set_cached(self.key(kind, pair, timeframe), value, expire=self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Failed to cache {kind}: {e}")

    async def get_or_load(
        self,
        kind: str,
        loader: Callable[[], Awaitable[Any]],
        pair: Optional[str] = None,
        timeframe: Optional[str] = None,
    ):
        cached = await self.get(kind, pair, timeframe)
        if cached is not None:
            return cached
        value = await loader()
        await self.set(kind, value, pair, timeframe)
        return value

    async def invalidate(self, kind: Optional[str] = None, pair: Optional[str] = None) -> int:
        """Drop entries of one kind (all kinds when None), optionally for one pair.

        A pair-specific invalidation also drops the pair-agnostic entries of
        that kind, since those aggregate every pair.
        """
        kind_part = kind or "*"
        patterns = [f"{self.prefix}:{kind_part}:{pair}:*", f"{self.prefix}:{kind_part}:any:*"] \
            if pair else [f"{self.prefix}:{kind_part}:*"]
        removed = 0
        for pattern in patterns:
            try:
                removed += await self.backend.delete_pattern(pattern)
            except Exception as e:
                logger.warning(f"Cache invalidation error for {pattern}: {e}")
        logger.debug("Invalidated %d cache entries (kind=%s, pair=%s)", removed, kind, pair)
        return removed
