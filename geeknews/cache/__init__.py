"""In-memory TTL cache for fetched feed items."""

from .store import CacheEntry, CacheStore

__all__ = ["CacheEntry", "CacheStore"]
