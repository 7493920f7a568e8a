"""
Odds feeds.

Each feed produces RawQuote batches for the quote store:
- OddsAPIClient: polls The Odds API for configured sports
"""

from .base import (
    AuthenticationError,
    BaseQuoteFeed,
    CircuitBreakerConfig,
    DataSourceError,
    FeedHealth,
    FeedStatus,
    RateLimitError,
    RetryConfig,
)
from .odds_api import OddsAPIClient, transform_event

__all__ = [
    "AuthenticationError",
    "BaseQuoteFeed",
    "CircuitBreakerConfig",
    "DataSourceError",
    "FeedHealth",
    "FeedStatus",
    "RateLimitError",
    "RetryConfig",
    "OddsAPIClient",
    "transform_event",
]
