"""RSS feed fetcher with async support, retries and per-attempt telemetry."""

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

import aiohttp
import feedparser
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential
import structlog

from .interfaces import (
    EmptyFeedError,
    FeedDescriptor,
    FeedFetchResult,
    FeedHTTPError,
    FetcherInterface,
    MalformedFeedError,
    NormalizedItem,
    error_kind,
    is_retryable,
)
from ..config.settings import settings

logger = structlog.get_logger()

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")

# HEAD answers that prove the GET would fail too
_PROBE_FATAL_STATUSES = (404, 410)


class RSSFetcher(FetcherInterface):
    """Async RSS/Atom fetcher with classified retries and exponential backoff."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        on_fetch_complete: Callable = None,
        sleep: Callable[[float], Awaitable[None]] = None,
        timeout_seconds: float = None,
        max_attempts: int = None,
        backoff_base_seconds: float = None,
        backoff_max_seconds: float = None,
        max_redirects: int = None,
        probe_before_fetch: bool = None,
    ):
        self.session = session
        self._owns_session = session is None
        self.on_fetch_complete = on_fetch_complete  # Callback per attempt
        self._sleep = sleep or asyncio.sleep
        self.timeout_seconds = settings.fetch_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.max_attempts = settings.fetch_max_retries if max_attempts is None else max_attempts
        self.backoff_base_seconds = (
            settings.retry_backoff_base_seconds if backoff_base_seconds is None else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.retry_backoff_max_seconds if backoff_max_seconds is None else backoff_max_seconds
        )
        self.max_redirects = settings.max_redirects if max_redirects is None else max_redirects
        self.probe_before_fetch = (
            settings.probe_before_fetch if probe_before_fetch is None else probe_before_fetch
        )

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={
                    "User-Agent": settings.user_agent,
                    "Accept": settings.accept_header,
                    "Cache-Control": "no-cache",
                },
            )
            self._owns_session = True
        return self.session

    async def fetch(self, feed: FeedDescriptor, desired_count: int) -> List[NormalizedItem]:
        """Fetch up to desired_count items from one feed. Never raises."""
        result = await self.fetch_with_stats(feed, desired_count)
        return result.items

    async def fetch_with_stats(self, feed: FeedDescriptor, desired_count: int) -> FeedFetchResult:
        """Fetch one feed, retrying transient errors.

        Unrecoverable failures are logged and reported through
        ``FeedFetchResult.error`` with an empty item list.
        """
        start_time = time.monotonic()
        result = FeedFetchResult(feed=feed)

        try:
            if self.probe_before_fetch:
                await self._probe(feed)

            async for attempt in self._retrying(feed):
                with attempt:
                    result.attempts = attempt.retry_state.attempt_number
                    items, available = await self._attempt(feed, desired_count, result.attempts)
            result.items = items
            result.available = available

        except Exception as e:
            result.error = str(e) or e.__class__.__name__
            logger.error(
                "feed_fetch_failed",
                feed=feed.name,
                error_kind=error_kind(e),
                error=result.error,
                attempts=result.attempts,
                time_ms=int((time.monotonic() - start_time) * 1000),
            )

        result.elapsed_ms = int((time.monotonic() - start_time) * 1000)
        if result.ok:
            logger.info(
                "feed_fetched",
                feed=feed.name,
                items=len(result.items),
                available=result.available,
                attempts=result.attempts,
                time_ms=result.elapsed_ms,
            )
        return result

    def _retrying(self, feed: FeedDescriptor) -> AsyncRetrying:
        # attempt i waits min(base * 2^(i-1), max) before attempt i+1
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base_seconds, max=self.backoff_max_seconds),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=lambda state: self._log_retry(feed, state),
            reraise=True,
        )

    def _log_retry(self, feed: FeedDescriptor, state: RetryCallState):
        logger.warning(
            "feed_fetch_retrying",
            feed=feed.name,
            attempt=state.attempt_number,
            wait_ms=int(state.next_action.sleep * 1000) if state.next_action else 0,
        )

    async def _attempt(
        self,
        feed: FeedDescriptor,
        desired_count: int,
        attempt: int,
    ) -> Tuple[List[NormalizedItem], int]:
        """One download-and-parse attempt, reported whether it succeeds or not."""
        start_time = time.monotonic()
        try:
            content = await self._download(feed.url)
            items, available = self.parse(content, feed, desired_count)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - start_time) * 1000)
            logger.warning(
                "feed_fetch_attempt_failed",
                feed=feed.name,
                attempt=attempt,
                error_kind=error_kind(e),
                error=str(e),
                time_ms=elapsed_ms,
            )
            self._report(feed, attempt, False, 0, elapsed_ms, error=str(e) or e.__class__.__name__)
            raise

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug(
            "feed_fetch_attempt",
            feed=feed.name,
            attempt=attempt,
            items=len(items),
            time_ms=elapsed_ms,
        )
        self._report(feed, attempt, True, len(items), elapsed_ms)
        return items, available

    def _report(self, feed, attempt, success, items, elapsed_ms, error=None):
        if self.on_fetch_complete:
            self.on_fetch_complete(
                feed_name=feed.name,
                attempt=attempt,
                success=success,
                items=items,
                fetch_time_ms=elapsed_ms,
                error=error,
            )

    async def _download(self, url: str) -> str:
        """GET the feed body as text."""
        session = self._get_session()
        async with session.get(url, max_redirects=self.max_redirects) as response:
            if response.status >= 400:
                raise FeedHTTPError(response.status, url)
            content = await response.text()

        if not content or not content.strip():
            raise EmptyFeedError(f"Empty response body from {url}")
        return content

    async def _probe(self, feed: FeedDescriptor):
        """Optional HEAD pre-flight. Only a definitive miss ends the fetch early."""
        session = self._get_session()
        try:
            async with session.head(
                feed.url, allow_redirects=True, max_redirects=self.max_redirects
            ) as response:
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug("feed_probe_failed", feed=feed.name, error=str(e))
            return

        if status in _PROBE_FATAL_STATUSES:
            raise FeedHTTPError(status, feed.url)

    def parse(
        self,
        content: str,
        feed: FeedDescriptor,
        desired_count: int,
    ) -> Tuple[List[NormalizedItem], int]:
        """Parse a feed document into at most desired_count items.

        Returns the items and the number of entries the document held.
        """
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            reason = parsed.get("bozo_exception") or "unparsable document"
            raise MalformedFeedError(f"Not a valid RSS/Atom feed: {reason}")

        items = []
        for entry in parsed.entries:
            if len(items) >= desired_count:
                break
            item = self._parse_entry(entry, feed)
            if item:
                items.append(item)

        return items, len(parsed.entries)

    def _parse_entry(self, entry, feed: FeedDescriptor) -> Optional[NormalizedItem]:
        """Parse a feed entry into a NormalizedItem."""
        link = entry.get("link") or entry.get("id") or ""
        if not link:
            return None

        # Parse date
        published_at = None
        for attr in ["published_parsed", "updated_parsed"]:
            parsed = entry.get(attr)
            if parsed:
                try:
                    published_at = datetime(*parsed[:6], tzinfo=timezone.utc)
                    break
                except (TypeError, ValueError):
                    pass

        summary = _TAG_RE.sub(" ", entry.get("summary", "") or "")
        summary = _SPACE_RE.sub(" ", summary).strip()

        return NormalizedItem(
            title=(entry.get("title") or "").strip() or "No title",
            link=link,
            published_at=published_at,
            source=feed.name,
            summary=summary[:500],
        )
