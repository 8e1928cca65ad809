"""Aggregation - concurrent collection, merging and rebalancing."""

from .interfaces import FeedCollectionStats, LoadingState, RebalanceStrategy, RebalanceTarget
from .rebalancer import ShortfallRebalancer
from .coordinator import AggregationCoordinator, merge_items

__all__ = [
    "FeedCollectionStats", "LoadingState", "RebalanceStrategy", "RebalanceTarget",
    "ShortfallRebalancer", "AggregationCoordinator", "merge_items",
]
