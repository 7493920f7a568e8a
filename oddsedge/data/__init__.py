"""
Data layer.

Provides:
- Quote normalization and the live quote store
- Odds feeds (``oddsedge.data.sources``)
"""
from .quote_store import (
    MarketGroup,
    Quote,
    QuoteRejected,
    QuoteSnapshot,
    QuoteStore,
    RawQuote,
    RejectReason,
    normalize_quote,
)

__all__ = [
    "MarketGroup",
    "Quote",
    "QuoteRejected",
    "QuoteSnapshot",
    "QuoteStore",
    "RawQuote",
    "RejectReason",
    "normalize_quote",
]
