"""Feed ingestion - fetching and parsing RSS/Atom feeds."""

from .interfaces import (
    FeedDescriptor, NormalizedItem, FeedFetchResult, FetcherInterface,
    FeedError, FeedHTTPError, MalformedFeedError, EmptyFeedError,
    is_retryable,
)
from .fetcher import RSSFetcher

__all__ = [
    "FeedDescriptor", "NormalizedItem", "FeedFetchResult", "FetcherInterface",
    "FeedError", "FeedHTTPError", "MalformedFeedError", "EmptyFeedError",
    "is_retryable", "RSSFetcher",
]
