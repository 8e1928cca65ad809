"""News query facade over the aggregation coordinator."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from ..aggregation.coordinator import AggregationCoordinator
from ..config.settings import CacheMode
from ..ingestion.interfaces import NormalizedItem

logger = structlog.get_logger()


@dataclass
class CacheStatus:
    """Snapshot of cache contents and loading state."""
    total_cached: int = 0
    per_feed_counts: Dict[str, int] = field(default_factory=dict)
    is_loading: bool = False
    loading_elapsed_seconds: int = 0
    cache_age_seconds: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "total_cached": self.total_cached,
            "per_feed_counts": dict(self.per_feed_counts),
            "is_loading": self.is_loading,
            "loading_elapsed_seconds": self.loading_elapsed_seconds,
            "cache_age_seconds": self.cache_age_seconds,
        }


class NewsService:
    """Fetch-all, search and status operations for callers.

    An empty result means no data is available right now; whether a
    collection is still running is reported by ``is_loading()``.
    """

    def __init__(self, coordinator: AggregationCoordinator = None):
        self.coordinator = coordinator if coordinator is not None else AggregationCoordinator()

    async def close(self):
        close = getattr(self.coordinator.fetcher, "close", None)
        if close:
            await close()

    async def fetch_all(self, limit: Optional[int] = None) -> List[NormalizedItem]:
        """All collected items newest first, capped to limit if given."""
        items = await self.coordinator.collect()
        if limit is not None:
            items = items[:max(0, limit)]
        return items

    async def search(self, keyword: str, limit: Optional[int] = None) -> List[NormalizedItem]:
        """Items whose title, summary or source contain keyword, case-insensitively."""
        items = await self.fetch_all()
        needle = (keyword or "").strip().lower()
        if needle:
            items = [
                item for item in items
                if needle in item.title.lower()
                or needle in item.summary.lower()
                or needle in item.source.lower()
            ]
        logger.info("news_search", keyword=needle, matches=len(items), limit=limit)
        if limit is not None:
            items = items[:max(0, limit)]
        return items

    async def page(self, offset: int = 0, count: int = 5) -> List[NormalizedItem]:
        """One page of the collected items, for "older news" browsing."""
        items = await self.fetch_all()
        offset = max(0, offset)
        return items[offset:offset + max(0, count)]

    def is_loading(self) -> bool:
        return self.coordinator.loading.is_loading

    def is_cache_ready(self) -> bool:
        return len(self.coordinator.cache.get_all()) > 0

    def get_cache_status(self) -> CacheStatus:
        coordinator = self.coordinator
        cache = coordinator.cache

        if coordinator.cache_mode == CacheMode.AGGREGATE:
            entry = cache.get(coordinator.AGGREGATE_KEY)
            cached = list(entry.items) if entry else []
            by_source = Counter(item.source for item in cached)
            per_feed = {feed.name: by_source.get(feed.name, 0) for feed in coordinator.feeds}
        else:
            cached = cache.get_all()
            per_feed = {}
            for feed in coordinator.feeds:
                entry = cache.get(feed.url)
                per_feed[feed.name] = len(entry.items) if entry else 0

        return CacheStatus(
            total_cached=len(cached),
            per_feed_counts=per_feed,
            is_loading=coordinator.loading.is_loading,
            loading_elapsed_seconds=int(coordinator.elapsed_loading_seconds()),
            cache_age_seconds=int(cache.oldest_age()),
        )
