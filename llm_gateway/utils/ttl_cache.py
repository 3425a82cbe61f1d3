"""
进程内TTL缓存
按键存储、定时过期，由持有者显式失效
"""

import time
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class CacheEntry(Generic[T]):
    """缓存条目"""

    def __init__(self, data: T, ttl: float, created_at: float):
        self.data = data
        self.ttl = ttl  # Time to live in seconds
        self.created_at = created_at
        self.access_count = 0

    def is_expired(self, now: float) -> bool:
        """检查是否过期"""
        return now - self.created_at > self.ttl


class TTLCache(Generic[T]):
    """带过期时间的键值缓存"""

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        entry.access_count += 1
        return entry.data

    def set(self, key: str, value: T) -> None:
        if self.max_size and key not in self._entries and len(self._entries) >= self.max_size:
            # 淘汰最早写入的条目
            oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
            del self._entries[oldest]
        self._entries[key] = CacheEntry(value, self.ttl, self._clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        """失效单个键，key为空时清空全部"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if e.is_expired(now))
        return {"size": len(self._entries), "expired": expired, "ttl": self.ttl}
