"""Shortfall rebalancing across feeds."""

import math
from typing import List

import structlog

from .interfaces import FeedCollectionStats, RebalanceStrategy, RebalanceTarget

logger = structlog.get_logger()


class ShortfallRebalancer(RebalanceStrategy):
    """Ask feeds with spare entries to cover for feeds that ran dry.

    This is an approximation. The deficit of each short feed is taken to be
    ``requested - deficit_floor`` rather than measured, and it is split evenly
    across the feeds with headroom.

    - underperforming: returned < requested and original_available < requested,
      and the fetch did not fail
    - overperforming: original_available >= headroom_factor * requested
    """

    def __init__(self, deficit_floor: int = 10, headroom_factor: float = 2.0):
        self.deficit_floor = deficit_floor
        self.headroom_factor = headroom_factor

    def underperforming(self, stats: List[FeedCollectionStats]) -> List[FeedCollectionStats]:
        return [
            s for s in stats
            if not s.failed
            and s.returned < s.requested
            and s.original_available < s.requested
        ]

    def overperforming(self, stats: List[FeedCollectionStats]) -> List[FeedCollectionStats]:
        return [
            s for s in stats
            if not s.failed and s.original_available >= self.headroom_factor * s.requested
        ]

    def plan(self, stats: List[FeedCollectionStats]) -> List[RebalanceTarget]:
        under = self.underperforming(stats)
        over = self.overperforming(stats)
        if not under or not over:
            return []

        shortfall = sum(max(0, s.requested - self.deficit_floor) for s in under)
        extra_per_feed = math.ceil(shortfall / len(over))
        if extra_per_feed <= 0:
            return []

        logger.info(
            "rebalance_planned",
            underperforming=[s.feed.name for s in under],
            overperforming=[s.feed.name for s in over],
            shortfall=shortfall,
            extra_per_feed=extra_per_feed,
        )
        return [RebalanceTarget(feed=s.feed, target=s.requested + extra_per_feed) for s in over]
