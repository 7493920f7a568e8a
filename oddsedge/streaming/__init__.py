"""
Streaming delivery.

Server side: SubscriptionHub and SSE framing.
Client side: ArbsStream, a reconnecting consumer of the stream.
"""

from .sse import PING, SSEDecoder, format_sse, parse_sse
from .subscriptions import Subscription, SubscriptionHub, Update
from .client import ArbsStream, ReconnectPolicy, StreamState

__all__ = [
    "PING",
    "SSEDecoder",
    "format_sse",
    "parse_sse",
    "Subscription",
    "SubscriptionHub",
    "Update",
    "ArbsStream",
    "ReconnectPolicy",
    "StreamState",
]
