"""Application settings with environment variable support."""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Compute base_dir at module level
_BASE_DIR = Path(__file__).parent.parent.parent.resolve()


class CacheMode(str, Enum):
    """What the cache store holds."""
    PER_FEED = "per_feed"      # one entry per feed endpoint
    AGGREGATE = "aggregate"    # one entry holding the merged result


class SingleFlightPolicy(str, Enum):
    """What a caller does when a collection pass is already running."""
    RETURN_EMPTY = "return_empty"
    WAIT = "wait"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GN_",  # GN_CACHE_MODE, GN_FETCH_TIMEOUT_SECONDS, etc.
    )

    base_dir: Path = _BASE_DIR
    feeds_config_path: Optional[Path] = None

    # HTTP
    fetch_timeout_seconds: float = 30.0
    max_redirects: int = 5
    user_agent: str = "Mozilla/5.0 (compatible; daily-geek-news-bot/2.0)"
    accept_header: str = "application/rss+xml, application/xml, text/xml, */*"
    probe_before_fetch: bool = False

    # Retries
    fetch_max_retries: int = 3
    retry_backoff_base_seconds: float = 1.0
    retry_backoff_max_seconds: float = 10.0

    # Collection
    per_feed_timeout_seconds: float = 35.0
    total_target_items: int = 100

    # Cache
    cache_mode: CacheMode = CacheMode.PER_FEED
    cache_ttl_seconds: Optional[float] = None  # None -> default for cache_mode

    # Single-flight
    single_flight_policy: SingleFlightPolicy = SingleFlightPolicy.RETURN_EMPTY
    single_flight_wait_seconds: float = 60.0

    # Rebalancing
    enable_rebalance: bool = True
    rebalance_deficit_floor: int = 10
    rebalance_headroom_factor: float = 2.0

    @model_validator(mode="after")
    def _check_retries(self) -> "Settings":
        if self.fetch_max_retries < 1:
            raise ValueError("fetch_max_retries must be at least 1")
        return self

    def ttl_for(self, mode: CacheMode = None) -> float:
        """Cache TTL for mode: the explicit override, else 30 min aggregate, 10 min per feed."""
        if self.cache_ttl_seconds is not None:
            return self.cache_ttl_seconds
        mode = self.cache_mode if mode is None else CacheMode(mode)
        return 30 * 60 if mode == CacheMode.AGGREGATE else 10 * 60


settings = Settings()
