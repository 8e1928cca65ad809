"""Configuration - settings and feed sources."""

from .settings import Settings, settings
from .feeds import DEFAULT_FEEDS, load_feeds

__all__ = ["Settings", "settings", "DEFAULT_FEEDS", "load_feeds"]
