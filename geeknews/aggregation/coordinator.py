"""Collection pass orchestration: cache, concurrent fetch, merge, rebalance."""

import asyncio
import math
import time
from itertools import chain
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from .interfaces import FeedCollectionStats, LoadingState, RebalanceStrategy
from .rebalancer import ShortfallRebalancer
from ..cache.store import CacheEntry, CacheStore
from ..config.feeds import load_feeds
from ..config.settings import CacheMode, SingleFlightPolicy, settings
from ..ingestion.fetcher import RSSFetcher
from ..ingestion.interfaces import FeedDescriptor, FeedFetchResult, FetcherInterface, NormalizedItem

logger = structlog.get_logger()


def merge_items(items: Iterable[NormalizedItem]) -> List[NormalizedItem]:
    """Drop undated items, sort newest first, keep the first item per link."""
    dated = [item for item in items if item.published_at is not None]
    dated.sort(key=lambda item: item.published_at, reverse=True)

    seen_links = set()
    unique = []
    for item in dated:
        if item.link not in seen_links:
            seen_links.add(item.link)
            unique.append(item)
    return unique


class AggregationCoordinator:
    """Owns the cache and loading state for one deployment.

    Only one collection pass runs at a time. A caller arriving while a pass is
    in flight either gets an empty list or waits on that same pass, depending
    on ``single_flight_policy``.
    """

    AGGREGATE_KEY = "__aggregate__"

    def __init__(
        self,
        feeds: Sequence[FeedDescriptor] = None,
        fetcher: FetcherInterface = None,
        cache: CacheStore = None,
        cache_mode: CacheMode = None,
        rebalancer: Optional[RebalanceStrategy] = None,
        enable_rebalance: bool = None,
        single_flight_policy: SingleFlightPolicy = None,
        single_flight_wait_seconds: float = None,
        per_feed_timeout_seconds: float = None,
        total_target_items: int = None,
        clock: Callable[[], float] = None,
    ):
        self.feeds = list(feeds) if feeds is not None else load_feeds()
        self.fetcher = fetcher if fetcher is not None else RSSFetcher()
        self._clock = clock or time.time
        self.cache_mode = CacheMode(settings.cache_mode if cache_mode is None else cache_mode)
        if cache is None:
            cache = CacheStore(settings.ttl_for(self.cache_mode), clock=self._clock)
        self.cache = cache

        # An injected strategy is used unless rebalancing is switched off explicitly
        if enable_rebalance is False:
            rebalancer = None
        elif rebalancer is None and (
            settings.enable_rebalance if enable_rebalance is None else enable_rebalance
        ):
            rebalancer = ShortfallRebalancer(
                deficit_floor=settings.rebalance_deficit_floor,
                headroom_factor=settings.rebalance_headroom_factor,
            )
        self.rebalancer = rebalancer

        self.single_flight_policy = SingleFlightPolicy(
            settings.single_flight_policy if single_flight_policy is None else single_flight_policy
        )
        self.single_flight_wait_seconds = (
            settings.single_flight_wait_seconds
            if single_flight_wait_seconds is None else single_flight_wait_seconds
        )
        self.per_feed_timeout_seconds = (
            settings.per_feed_timeout_seconds
            if per_feed_timeout_seconds is None else per_feed_timeout_seconds
        )
        self.total_target_items = (
            settings.total_target_items if total_target_items is None else total_target_items
        )

        self.loading = LoadingState()
        self._inflight: Optional[asyncio.Future] = None

        logger.info(
            "coordinator_initialized",
            feeds=len(self.feeds),
            cache_mode=self.cache_mode.value,
            ttl_seconds=self.cache.ttl_seconds,
            policy=self.single_flight_policy.value,
            rebalance=self.rebalancer is not None,
        )

    def items_per_feed(self, feeds: Sequence[FeedDescriptor] = None) -> int:
        """Default per-feed target: the total target spread over the feeds."""
        feeds = self.feeds if feeds is None else feeds
        if not feeds:
            return 0
        return max(1, math.ceil(self.total_target_items / len(feeds)))

    def elapsed_loading_seconds(self) -> float:
        return self.loading.elapsed(self._clock())

    async def collect(
        self,
        feeds: Sequence[FeedDescriptor] = None,
        items_per_feed: int = None,
    ) -> List[NormalizedItem]:
        """Collect items across feeds: deduplicated by link, newest first.

        In aggregate mode the merged result is cached per (feeds, items_per_feed)
        combination, so a call for a subset of feeds never receives another
        combination's result.

        Never raises for feed failures; a total outage yields an empty list.
        """
        feeds = self.feeds if feeds is None else list(feeds)
        if items_per_feed is None:
            items_per_feed = self.items_per_feed(feeds)
        if not feeds or items_per_feed <= 0:
            return []

        cached = self._from_cache(feeds, items_per_feed)
        if cached is not None:
            return cached

        if self.loading.is_loading:
            return await self._join_inflight()

        # Mark loading before the task exists so later callers see it at once
        self.loading.start(self._clock())
        self._inflight = asyncio.ensure_future(self._run_pass(feeds, items_per_feed))
        result = await asyncio.shield(self._inflight)
        return list(result)

    def snapshot(self) -> List[NormalizedItem]:
        """Merged view of whatever is cached right now. Never fetches."""
        if self.cache_mode == CacheMode.AGGREGATE:
            entry = self.cache.get(self.AGGREGATE_KEY)
            return list(entry.items) if entry else []
        return merge_items(self.cache.get_all())

    def _from_cache(
        self,
        feeds: Sequence[FeedDescriptor],
        items_per_feed: int,
    ) -> Optional[List[NormalizedItem]]:
        """Serve entirely from cache, or None if anything must be fetched."""
        if self.cache_mode == CacheMode.AGGREGATE:
            entry = self.cache.get(self._aggregate_key(feeds, items_per_feed))
            if entry is None:
                return None
            logger.info("aggregate_cache_hit", items=len(entry.items))
            return list(entry.items)

        batches = []
        for feed in feeds:
            entry = self.cache.get(feed.url)
            if entry is None:
                return None
            batches.append(self._cached_batch(entry, items_per_feed))

        items = merge_items(chain.from_iterable(batches))
        logger.info("cache_hit", feeds=len(feeds), items=len(items))
        return items

    def _aggregate_key(self, feeds: Sequence[FeedDescriptor], items_per_feed: int) -> str:
        """AGGREGATE_KEY for the deployment's default collection, a derived key otherwise."""
        if list(feeds) == self.feeds and items_per_feed == self.items_per_feed():
            return self.AGGREGATE_KEY
        urls = ",".join(sorted(feed.url for feed in feeds))
        return f"{self.AGGREGATE_KEY}:{items_per_feed}:{urls}"

    @staticmethod
    def _cached_batch(entry: CacheEntry, items_per_feed: int) -> List[NormalizedItem]:
        return entry.items[:items_per_feed + entry.extra]

    async def _join_inflight(self) -> List[NormalizedItem]:
        elapsed = round(self.elapsed_loading_seconds(), 1)
        if self.single_flight_policy == SingleFlightPolicy.RETURN_EMPTY or self._inflight is None:
            logger.info("collection_in_progress", elapsed_seconds=elapsed)
            return []

        logger.info(
            "collection_waiting",
            elapsed_seconds=elapsed,
            max_wait_seconds=self.single_flight_wait_seconds,
        )
        try:
            result = await asyncio.wait_for(
                asyncio.shield(self._inflight),
                timeout=self.single_flight_wait_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("collection_wait_timeout", waited_seconds=self.single_flight_wait_seconds)
            return self.snapshot()
        return list(result)

    async def _run_pass(
        self,
        feeds: List[FeedDescriptor],
        items_per_feed: int,
    ) -> List[NormalizedItem]:
        start_time = time.monotonic()
        logger.info(
            "collection_started",
            feeds=len(feeds),
            items_per_feed=items_per_feed,
            cache_mode=self.cache_mode.value,
        )

        try:
            if self.cache_mode == CacheMode.AGGREGATE:
                items = await self._collect_aggregate(feeds, items_per_feed)
            else:
                items = await self._collect_per_feed(feeds, items_per_feed)
        except Exception as e:
            logger.error("collection_failed", error=str(e), error_type=type(e).__name__)
            items = []
        finally:
            self.loading.reset()

        logger.info(
            "collection_finished",
            items=len(items),
            time_ms=int((time.monotonic() - start_time) * 1000),
        )
        return items

    async def _collect_per_feed(
        self,
        feeds: List[FeedDescriptor],
        items_per_feed: int,
    ) -> List[NormalizedItem]:
        batches = []
        to_fetch = []
        for feed in feeds:
            entry = self.cache.get(feed.url)
            if entry is not None:
                logger.debug("feed_cache_hit", feed=feed.name, items=len(entry.items))
                batches.append(self._cached_batch(entry, items_per_feed))
            else:
                to_fetch.append(feed)

        results = await self._fetch_many([(feed, items_per_feed) for feed in to_fetch])

        stats = []
        for result in results:
            if result.ok:
                self.cache.set(result.feed.url, result.items)
            batches.append(result.items)
            stats.append(FeedCollectionStats.from_result(result, items_per_feed))

        merged = merge_items(chain.from_iterable(batches))
        return await self._rebalance(merged, stats)

    async def _collect_aggregate(
        self,
        feeds: List[FeedDescriptor],
        items_per_feed: int,
    ) -> List[NormalizedItem]:
        results = await self._fetch_many([(feed, items_per_feed) for feed in feeds])
        stats = [FeedCollectionStats.from_result(r, items_per_feed) for r in results]

        merged = merge_items(chain.from_iterable(r.items for r in results))
        merged = await self._rebalance(merged, stats)

        # A total outage is not cached so the next call retries
        if merged:
            self.cache.set(self._aggregate_key(feeds, items_per_feed), merged)
        return merged

    async def _fetch_many(self, targets: List[Tuple[FeedDescriptor, int]]) -> List[FeedFetchResult]:
        """Fetch all targets concurrently and wait for every one to settle."""
        if not targets:
            return []

        results = await asyncio.gather(
            *(self._fetch_one(feed, count) for feed, count in targets),
            return_exceptions=True,
        )

        settled = []
        for (feed, _), result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("feed_fetch_exception", feed=feed.name, error=str(result))
                settled.append(FeedFetchResult(feed=feed, error=str(result) or type(result).__name__))
            else:
                settled.append(result)
        return settled

    async def _fetch_one(self, feed: FeedDescriptor, count: int) -> FeedFetchResult:
        """Race one feed against the per-feed timeout."""
        try:
            return await asyncio.wait_for(
                self.fetcher.fetch_with_stats(feed, count),
                timeout=self.per_feed_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("feed_timeout", feed=feed.name, timeout_seconds=self.per_feed_timeout_seconds)
            return FeedFetchResult(
                feed=feed,
                error=f"timed out after {self.per_feed_timeout_seconds}s",
            )

    async def _rebalance(
        self,
        merged: List[NormalizedItem],
        stats: List[FeedCollectionStats],
    ) -> List[NormalizedItem]:
        """One compensating fetch round. Only ever adds items."""
        if self.rebalancer is None or not stats:
            return merged

        targets = self.rebalancer.plan(stats)
        if not targets:
            return merged

        results = await self._fetch_many([(t.feed, t.target) for t in targets])

        requested = {s.feed.url: s.requested for s in stats}
        seen_links = {item.link for item in merged}
        extra = []
        for target, result in zip(targets, results):
            # Later cache hits must serve the same enlarged share
            if result.ok and self.cache_mode == CacheMode.PER_FEED:
                self.cache.set(
                    result.feed.url,
                    result.items,
                    extra=target.target - requested.get(result.feed.url, target.target),
                )
            for item in result.items:
                if item.link not in seen_links:
                    seen_links.add(item.link)
                    extra.append(item)

        if not extra:
            return merged

        rebalanced = merge_items(chain(merged, extra))
        logger.info("rebalance_finished", added=len(rebalanced) - len(merged), total=len(rebalanced))
        return rebalanced
