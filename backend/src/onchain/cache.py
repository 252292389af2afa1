import time
from typing import Any, Callable, Dict, Optional, Tuple


def _now_ms() -> float:
    return time.time() * 1000


class MetadataCache:
    """
    TTL cache for resolved NFT metadata, keyed by mint address.
    Negative results are stored with the shorter ``miss_ttl_ms``.
    """

    def __init__(
        self,
        ttl_ms: int = 300_000,
        miss_ttl_ms: int = 30_000,
        max_size: int = 1024,
        clock: Callable[[], float] = _now_ms,
    ):
        self.ttl_ms = ttl_ms
        self.miss_ttl_ms = miss_ttl_ms
        self.max_size = max_size
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}  # mint -> (expires_at, value)

    def get(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if not entry:
            return None
        expires_at, value = entry
        if self._clock() > expires_at:
            self._cache.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, hit: bool = True):
        ttl = self.ttl_ms if hit else self.miss_ttl_ms
        if key not in self._cache and len(self._cache) >= self.max_size:
            # evict whichever entry expires first
            oldest_key = min(self._cache.items(), key=lambda kv: kv[1][0])[0]
            self._cache.pop(oldest_key, None)
        self._cache[key] = (self._clock() + ttl, value)

    def __len__(self) -> int:
        return len(self._cache)
