"""TTL cache store keyed by feed endpoint.

Expiry is evaluated on read: an entry older than the TTL is never returned,
whether or not anything swept it.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import structlog

from ..ingestion.interfaces import NormalizedItem

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    """Items cached for one key and the time they were stored."""
    items: List[NormalizedItem] = field(default_factory=list)
    inserted_at: float = 0.0
    extra: int = 0  # items granted beyond the per-feed target by rebalancing

    def age(self, now: float) -> float:
        return now - self.inserted_at


class CacheStore:
    """Volatile key-value store with a single TTL for every entry."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = None):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time
        self._entries: Dict[str, CacheEntry] = {}

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return entry.age(now) >= self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._expired(entry, self._clock()):
            del self._entries[key]
            logger.debug("cache_entry_expired", key=key)
            return None

        return entry

    def set(self, key: str, items: List[NormalizedItem], extra: int = 0) -> CacheEntry:
        """Overwrite the entry for key, stamped with the current time."""
        entry = CacheEntry(items=list(items), inserted_at=self._clock(), extra=max(0, extra))
        self._entries[key] = entry
        return entry

    def get_all(self) -> List[NormalizedItem]:
        """Concatenate items of every live entry, dropping expired ones."""
        now = self._clock()
        items = []
        for key, entry in list(self._entries.items()):
            if self._expired(entry, now):
                del self._entries[key]
                continue
            items.extend(entry.items)
        return items

    def sweep(self) -> int:
        """Delete all expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("cache_swept", removed=len(expired))
        return len(expired)

    def oldest_age(self) -> float:
        """Age in seconds of the oldest live entry, 0 when empty."""
        self.sweep()
        if not self._entries:
            return 0.0
        now = self._clock()
        return max(entry.age(now) for entry in self._entries.values())

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        self.sweep()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
