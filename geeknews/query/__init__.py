"""Query facade consumed by command and presentation layers."""

from .service import CacheStatus, NewsService

__all__ = ["CacheStatus", "NewsService"]
