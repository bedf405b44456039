"""Cache abstractions for loaded entitlement records."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Protocol, Set

from .models import Entitlement


class EntitlementCache(Protocol):
    """Protocol describing cache operations used by the query service."""

    def get(self, key: str) -> Optional[Entitlement]:
        ...

    def set(self, key: str, value: Entitlement, expires_at: datetime, tags: Set[str]) -> None:
        ...

    def invalidate(self, tags: Iterable[str]) -> None:
        ...


def account_tag(account_id: str) -> str:
    return f"account:{account_id}"


@dataclass
class _CacheEntry:
    value: Entitlement
    expires_at: datetime
    tags: Set[str]

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryEntitlementCache:
    """Process-local cache; stores raw records so validity is still judged per read."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, key: str) -> Optional[Entitlement]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.is_expired(now):
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: Entitlement,
        expires_at: datetime,
        tags: Set[str],
    ) -> None:
        now = self._clock()
        if expires_at <= now:
            return
        with self._lock:
            self._entries[key] = _CacheEntry(value=value, expires_at=expires_at, tags=set(tags))

    def invalidate(self, tags: Iterable[str]) -> None:
        tag_set = set(tags)
        if not tag_set:
            return
        with self._lock:
            keys_to_delete = [
                key
                for key, entry in self._entries.items()
                if entry.tags.intersection(tag_set)
            ]
            for key in keys_to_delete:
                self._entries.pop(key, None)


class NullEntitlementCache:
    """Cache that never stores anything; used when caching is disabled."""

    def get(self, key: str) -> Optional[Entitlement]:
        return None

    def set(self, key: str, value: Entitlement, expires_at: datetime, tags: Set[str]) -> None:
        return None

    def invalidate(self, tags: Iterable[str]) -> None:
        return None


__all__ = ["EntitlementCache", "InMemoryEntitlementCache", "NullEntitlementCache", "account_tag"]
