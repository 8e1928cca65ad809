"""Interface definitions for feed ingestion."""

import asyncio
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import aiohttp


@dataclass(frozen=True)
class FeedDescriptor:
    """A remote feed. Identity is the endpoint."""
    name: str = field(compare=False)
    url: str


@dataclass
class NormalizedItem:
    """A feed entry mapped to the fields the engine orders and dedupes on."""
    title: str = ""
    link: str = ""
    published_at: Optional[datetime] = None
    source: str = ""
    summary: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "link": self.link,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "source": self.source,
            "summary": self.summary,
        }


@dataclass
class FeedFetchResult:
    """Outcome of fetching one feed, with the counts the rebalancer needs."""
    feed: FeedDescriptor
    items: List[NormalizedItem] = field(default_factory=list)
    available: int = 0  # entries present upstream before truncation
    attempts: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FeedError(Exception):
    """Base class for non-retryable feed failures."""

    kind = "feed"


class FeedHTTPError(FeedError):
    """Upstream answered with an error status."""

    kind = "http"

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status} from {url}" if url else f"HTTP {status}")
        self.status = status
        self.url = url


class MalformedFeedError(FeedError):
    """Body could not be parsed as RSS/Atom."""

    kind = "malformed"


class EmptyFeedError(FeedError):
    """Upstream returned an empty body."""

    kind = "empty"


# Connection resets, refusals, DNS failures, timeouts and server hang-ups.
RETRYABLE_ERRORS = (
    asyncio.TimeoutError,
    ConnectionError,
    socket.gaierror,
    aiohttp.ClientConnectionError,
)


def is_retryable(error: BaseException) -> bool:
    """Whether a fetch error is transient and worth another attempt."""
    if isinstance(error, FeedError):
        return False
    return isinstance(error, RETRYABLE_ERRORS)


def error_kind(error: BaseException) -> str:
    """Short classification used in log events."""
    if isinstance(error, FeedError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return "timeout"
    if isinstance(error, RETRYABLE_ERRORS):
        return "network"
    return "unknown"


class FetcherInterface:
    """Interface for feed fetching."""

    async def fetch(self, feed: FeedDescriptor, desired_count: int) -> List[NormalizedItem]:
        """Fetch up to desired_count items. Never raises."""
        raise NotImplementedError

    async def fetch_with_stats(self, feed: FeedDescriptor, desired_count: int) -> FeedFetchResult:
        """Fetch one feed and report counts and timing. Never raises."""
        raise NotImplementedError
