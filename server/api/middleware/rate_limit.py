"""In-process sliding-window rate limiter, keyed per bearer token or client IP."""
import asyncio
import hashlib
import time
from typing import Optional

_WINDOW_S = 60.0
_STALE_AFTER_S = 120.0
_EVICT_EVERY_S = 300.0


class RateLimiter:
    """
    Per-minute request budget per key.

    Buckets are sharded over several locks. Stale keys are dropped every
    few minutes and the table is halved (oldest first) when it grows past
    ``max_buckets``.
    """

    def __init__(
        self,
        limit: int,
        unauthenticated_limit: Optional[int] = None,
        max_buckets: int = 10_000,
        shards: int = 16,
    ):
        self.limit = limit
        self.unauthenticated_limit = unauthenticated_limit or max(limit // 3, 20)
        self.max_buckets = max_buckets
        self._buckets: dict[str, list[float]] = {}
        self._locks = [asyncio.Lock() for _ in range(shards)]
        self._last_eviction = time.time()

    @staticmethod
    def key_for(authorization: str, client_host: Optional[str]) -> tuple[str, bool]:
        """Bucket key and whether the caller presented a bearer token."""
        if authorization.startswith("Bearer "):
            return "tok:" + hashlib.sha256(authorization.encode()).hexdigest()[:16], True
        ip = client_host or "unknown"
        return "ip:" + hashlib.sha256(ip.encode()).hexdigest()[:16], False

    async def allow(self, key: str, authenticated: bool) -> bool:
        limit = self.limit if authenticated else self.unauthenticated_limit
        async with self._locks[hash(key) % len(self._locks)]:
            now = time.time()
            if now - self._last_eviction > _EVICT_EVERY_S:
                self._evict(now)

            bucket = [t for t in self._buckets.get(key, []) if now - t < _WINDOW_S]
            if len(bucket) >= limit:
                self._buckets[key] = bucket
                return False
            bucket.append(now)
            self._buckets[key] = bucket
            return True

    def _evict(self, now: float) -> None:
        stale = [k for k, v in self._buckets.items() if not v or now - v[-1] > _STALE_AFTER_S]
        for k in stale:
            del self._buckets[k]
        if len(self._buckets) > self.max_buckets:
            oldest = sorted(self._buckets, key=lambda k: self._buckets[k][-1] if self._buckets[k] else 0)
            for k in oldest[: len(oldest) // 2]:
                del self._buckets[k]
        self._last_eviction = now
