"""Interface definitions for aggregation."""

from dataclasses import dataclass
from typing import List, Optional

from ..ingestion.interfaces import FeedDescriptor, FeedFetchResult


@dataclass
class FeedCollectionStats:
    """Per-feed counts from one collection pass. Not cached."""
    feed: FeedDescriptor
    requested: int
    original_available: int
    returned: int
    failed: bool = False

    @classmethod
    def from_result(cls, result: FeedFetchResult, requested: int) -> "FeedCollectionStats":
        return cls(
            feed=result.feed,
            requested=requested,
            original_available=result.available,
            returned=len(result.items),
            failed=not result.ok,
        )


@dataclass
class RebalanceTarget:
    """A feed to fetch again with a larger item target."""
    feed: FeedDescriptor
    target: int


@dataclass
class LoadingState:
    """Whether a collection pass is in flight, and since when."""
    is_loading: bool = False
    started_at: Optional[float] = None

    def start(self, now: float):
        self.is_loading = True
        self.started_at = now

    def reset(self):
        self.is_loading = False
        self.started_at = None

    def elapsed(self, now: float) -> float:
        if not self.is_loading or self.started_at is None:
            return 0.0
        return now - self.started_at


class RebalanceStrategy:
    """Interface for compensating feeds that came up short.

    A strategy only proposes targets; the coordinator runs at most one
    extra fetch round per pass and never removes items.
    """

    def plan(self, stats: List[FeedCollectionStats]) -> List[RebalanceTarget]:
        """Return feeds to re-fetch with their new targets. Empty for none."""
        raise NotImplementedError
