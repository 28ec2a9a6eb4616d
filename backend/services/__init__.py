"""
Services
Long-lived runtime pieces: the platform container and the metrics feed.
"""

from .metrics_feed import MetricsFeedService, FeedStats
from .platform import MonitoringPlatform, TokenResolver

__all__ = [
    "MetricsFeedService",
    "FeedStats",
    "MonitoringPlatform",
    "TokenResolver",
]
