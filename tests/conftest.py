"""Pytest configuration and shared fixtures."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from geeknews.ingestion.interfaces import FeedDescriptor, FeedFetchResult, FetcherInterface, NormalizedItem

BASE_TIME = datetime(2025, 1, 6, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher(FetcherInterface):
    """In-memory fetcher that records calls and overlapping fetches per feed."""

    def __init__(self, items_by_url=None, failing_urls=(), delays=None, gate=None):
        self.items_by_url = items_by_url or {}
        self.failing_urls = set(failing_urls)
        self.delays = delays or {}
        self.gate = gate
        self.calls = []
        self._active = defaultdict(int)
        self.max_overlap = defaultdict(int)

    def call_count(self, url: str) -> int:
        return sum(1 for called_url, _ in self.calls if called_url == url)

    async def fetch(self, feed, desired_count):
        return (await self.fetch_with_stats(feed, desired_count)).items

    async def fetch_with_stats(self, feed, desired_count):
        self.calls.append((feed.url, desired_count))
        self._active[feed.url] += 1
        self.max_overlap[feed.url] = max(self.max_overlap[feed.url], self._active[feed.url])
        try:
            if self.gate is not None:
                await self.gate.wait()
            if feed.url in self.delays:
                await asyncio.sleep(self.delays[feed.url])
        finally:
            self._active[feed.url] -= 1

        if feed.url in self.failing_urls:
            return FeedFetchResult(feed=feed, error="connection reset", attempts=3)

        items = self.items_by_url.get(feed.url, [])
        return FeedFetchResult(
            feed=feed,
            items=list(items[:desired_count]),
            available=len(items),
            attempts=1,
        )


@pytest.fixture
def clock():
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def feed_a():
    return FeedDescriptor(name="Toss Tech", url="https://toss.tech/rss.xml")


@pytest.fixture
def feed_b():
    return FeedDescriptor(name="DaangnNewsFeed", url="https://medium.com/feed/daangn")


@pytest.fixture
def make_item():
    """Factory for NormalizedItems dated relative to a fixed base time."""
    def _make(link, hours_ago=0, title=None, source="Toss Tech", summary="", dated=True):
        return NormalizedItem(
            title=title or f"Post {link}",
            link=link,
            published_at=BASE_TIME - timedelta(hours=hours_ago) if dated else None,
            source=source,
            summary=summary,
        )
    return _make


@pytest.fixture
def make_items(make_item):
    """Factory for n items from one source, newest first."""
    def _make(prefix, count, source="Toss Tech", start_hours_ago=0):
        return [
            make_item(f"https://example.com/{prefix}/{i}", hours_ago=start_hours_ago + i, source=source)
            for i in range(count)
        ]
    return _make


@pytest.fixture
def make_fetcher():
    """Factory for FakeFetcher instances."""
    def _make(**kwargs):
        return FakeFetcher(**kwargs)
    return _make


@pytest.fixture
def make_rss():
    """Factory for RSS 2.0 documents with n dated items."""
    def _make(count, prefix="post", title="Tech Blog"):
        entries = []
        for i in range(count):
            published = (BASE_TIME - timedelta(hours=i)).strftime("%a, %d %b %Y %H:%M:%S GMT")
            entries.append(
                f"<item><title>{prefix} {i}</title>"
                f"<link>https://example.com/{prefix}/{i}</link>"
                f"<description>&lt;p&gt;Summary of {prefix} {i}&lt;/p&gt;</description>"
                f"<pubDate>{published}</pubDate></item>"
            )
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<rss version="2.0"><channel><title>{title}</title>'
            "<link>https://example.com</link><description>feed</description>"
            + "".join(entries)
            + "</channel></rss>"
        )
    return _make


@pytest.fixture
def sleep_recorder():
    """Async sleep replacement that records requested delays."""
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
