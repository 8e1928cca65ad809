"""Feed source registry."""

import json
from pathlib import Path
from typing import List

import structlog

from .settings import settings
from ..ingestion.interfaces import FeedDescriptor

logger = structlog.get_logger()

# Ordered by observed stability
DEFAULT_FEEDS = [
    FeedDescriptor(name="Toss Tech", url="https://toss.tech/rss.xml"),
    FeedDescriptor(name="GeekNewsFeed", url="http://feeds.feedburner.com/geeknews-feed"),
    FeedDescriptor(name="LineTechNews", url="https://techblog.lycorp.co.jp/ko/feed/index.xml"),
    FeedDescriptor(name="CoupangNewsFeed", url="https://medium.com/feed/coupang-engineering"),
    FeedDescriptor(name="DaangnNewsFeed", url="https://medium.com/feed/daangn"),
]


def load_feeds(config_path: str = None) -> List[FeedDescriptor]:
    """Load feed descriptors from a JSON file, or the defaults without one.

    The file holds ``{"feeds": [{"name": ..., "url": ..., "enabled": true}]}``.
    Disabled feeds and repeated endpoints are skipped.
    """
    if config_path is None:
        config_path = settings.feeds_config_path
    if config_path is None:
        return list(DEFAULT_FEEDS)

    with open(Path(config_path)) as f:
        data = json.load(f)

    feeds = []
    seen_urls = set()
    for feed_data in data.get("feeds", []):
        if not feed_data.get("enabled", True):
            continue
        url = feed_data["url"]
        if url in seen_urls:
            logger.warning("duplicate_feed_skipped", name=feed_data.get("name"), url=url)
            continue
        seen_urls.add(url)
        feeds.append(FeedDescriptor(name=feed_data.get("name") or url, url=url))

    logger.info("feeds_loaded", path=str(config_path), feeds=len(feeds))
    return feeds
