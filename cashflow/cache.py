from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List

from cashflow.items import RecurringItem


@dataclass(frozen=True)
class CacheOptions:
    ttl: timedelta
    key: str


@dataclass(frozen=True)
class CachedValue:
    value: Any
    expires_at: float


@dataclass
class ExpiringCache:
    """In-process TTL cache owned by whoever constructs it."""

    default_ttl: timedelta = timedelta(seconds=60)
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, CachedValue] = field(default_factory=dict)

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        lifetime = (ttl if ttl is not None else self.default_ttl).total_seconds()
        self._entries[key] = CachedValue(value=value, expires_at=self.clock() + lifetime)

    def get(self, key: str) -> Any | None:
        cached = self._entries.get(key)
        if cached is None:
            return None
        if cached.expires_at <= self.clock():
            del self._entries[key]
            return None
        return cached.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear_all(self) -> None:
        self._entries.clear()


@dataclass
class CachedItemSource:
    source: Any
    cache: ExpiringCache
    options: CacheOptions

    def fetch_recurring_items(self, user_id: str) -> List[RecurringItem]:
        key = self.cache_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        items = self.source.fetch_recurring_items(user_id)
        self.cache.set(key, tuple(items), ttl=self.options.ttl)
        return list(items)

    def invalidate(self, user_id: str) -> None:
        self.cache.clear(self.cache_key(user_id))

    def cache_key(self, user_id: str) -> str:
        return f"{self.options.key}:{user_id}"
