"""Unit tests for the news query facade."""

import asyncio

import pytest

from geeknews.aggregation.coordinator import AggregationCoordinator
from geeknews.cache.store import CacheStore
from geeknews.config.settings import CacheMode
from geeknews.query.service import NewsService


@pytest.fixture
def cached_service(feed_a, feed_b, make_item, make_items, make_fetcher, clock):
    """Service over 50 cached items, 3 of which mention AI in the title."""
    items = make_items("a", 47)
    items += [
        make_item(f"https://example.com/ai/{n}", hours_ago=100 + n, title=f"AI agents part {n}")
        for n in range(3)
    ]
    coordinator = AggregationCoordinator(
        feeds=[feed_a],
        fetcher=make_fetcher(),
        cache=CacheStore(600, clock=clock),
        enable_rebalance=False,
        total_target_items=50,
        clock=clock,
    )
    coordinator.cache.set(feed_a.url, items)
    return NewsService(coordinator)


@pytest.mark.asyncio
class TestNewsService:
    """Tests for NewsService."""

    async def test_fetch_all_returns_everything(self, cached_service):
        items = await cached_service.fetch_all()
        assert len(items) == 50

    async def test_fetch_all_limit(self, cached_service):
        items = await cached_service.fetch_all(limit=5)
        assert [i.link for i in items] == [f"https://example.com/a/{n}" for n in range(5)]

    async def test_search_matches_title(self, cached_service):
        """Only the 3 matching items come back even though limit is 5."""
        items = await cached_service.search("AI", 5)
        assert sorted(i.link for i in items) == [f"https://example.com/ai/{n}" for n in range(3)]

    async def test_search_is_case_insensitive(self, cached_service):
        items = await cached_service.search("ai agents")
        assert len(items) == 3

    async def test_search_matches_source_and_summary(self, feed_a, make_item, make_fetcher, clock):
        coordinator = AggregationCoordinator(
            feeds=[feed_a], fetcher=make_fetcher(), cache=CacheStore(600, clock=clock),
            enable_rebalance=False, clock=clock,
        )
        coordinator.cache.set(feed_a.url, [
            make_item("https://example.com/1", source="Kotlin Weekly"),
            make_item("https://example.com/2", summary="Migrating to kotlin coroutines"),
            make_item("https://example.com/3"),
        ])
        service = NewsService(coordinator)

        items = await service.search("KOTLIN")

        assert {i.link for i in items} == {"https://example.com/1", "https://example.com/2"}

    async def test_blank_keyword_returns_unfiltered(self, cached_service):
        assert len(await cached_service.search("   ")) == 50
        assert len(await cached_service.search("", limit=7)) == 7

    async def test_page(self, cached_service):
        items = await cached_service.page(offset=5, count=5)
        assert [i.link for i in items] == [f"https://example.com/a/{n}" for n in range(5, 10)]
        assert await cached_service.page(offset=60, count=5) == []

    async def test_empty_when_nothing_available(self, feed_a, make_fetcher, clock):
        coordinator = AggregationCoordinator(
            feeds=[feed_a], fetcher=make_fetcher(failing_urls=[feed_a.url]),
            cache=CacheStore(600, clock=clock), enable_rebalance=False, clock=clock,
        )
        service = NewsService(coordinator)

        assert await service.fetch_all(limit=5) == []
        assert service.is_loading() is False
        assert service.is_cache_ready() is False

    async def test_loading_visible_during_collection(self, feed_a, make_items, make_fetcher, clock):
        gate = asyncio.Event()
        coordinator = AggregationCoordinator(
            feeds=[feed_a],
            fetcher=make_fetcher(items_by_url={feed_a.url: make_items("a", 3)}, gate=gate),
            cache=CacheStore(600, clock=clock), enable_rebalance=False, clock=clock,
        )
        service = NewsService(coordinator)

        pending = asyncio.ensure_future(service.fetch_all())
        await asyncio.sleep(0)
        clock.advance(7)

        status = service.get_cache_status()
        assert status.is_loading is True
        assert status.loading_elapsed_seconds == 7

        gate.set()
        assert len(await pending) == 3
        assert service.is_cache_ready() is True


class TestCacheStatus:
    """Tests for get_cache_status."""

    def test_status_per_feed(self, feed_a, feed_b, make_items, make_fetcher, clock):
        coordinator = AggregationCoordinator(
            feeds=[feed_a, feed_b], fetcher=make_fetcher(),
            cache=CacheStore(600, clock=clock), enable_rebalance=False, clock=clock,
        )
        coordinator.cache.set(feed_a.url, make_items("a", 4))
        clock.advance(42)
        service = NewsService(coordinator)

        status = service.get_cache_status()

        assert status.total_cached == 4
        assert status.per_feed_counts == {"Toss Tech": 4, "DaangnNewsFeed": 0}
        assert status.is_loading is False
        assert status.loading_elapsed_seconds == 0
        assert status.cache_age_seconds == 42
        assert status.to_dict()["per_feed_counts"]["Toss Tech"] == 4

    def test_status_aggregate_mode(self, feed_a, feed_b, make_items, make_fetcher, clock):
        coordinator = AggregationCoordinator(
            feeds=[feed_a, feed_b], fetcher=make_fetcher(),
            cache=CacheStore(1800, clock=clock), cache_mode=CacheMode.AGGREGATE,
            enable_rebalance=False, clock=clock,
        )
        coordinator.cache.set(
            AggregationCoordinator.AGGREGATE_KEY,
            make_items("a", 2) + make_items("b", 3, source="DaangnNewsFeed"),
        )

        status = NewsService(coordinator).get_cache_status()

        assert status.total_cached == 5
        assert status.per_feed_counts == {"Toss Tech": 2, "DaangnNewsFeed": 3}
