"""Upstream market data: feed clients, storage and the sync coordinator.

Public API:
    MarketSnapshot      - Immutable normalized 24h ticker
    Market              - Stored market row (status + latest snapshot)
    MarketStore         - Abstract market storage
    InMemoryMarketStore - Dict-backed MarketStore
    FeedClient          - Abstract interface for upstream providers
    StreamHandle        - Supervised, self-reconnecting upstream stream
    RetryPolicy         - Delay schedule for reconnects and retries
    SyncCoordinator     - Keeps the store in step with the feed
    create_feed_client  - Factory that selects the simulator or Binance
"""

from .factory import create_feed_client
from .interface import FeedClient, StreamHandle
from .models import Market, MarketSnapshot
from .retry import RetryPolicy
from .store import InMemoryMarketStore, MarketStore
from .sync import SyncCoordinator

__all__ = [
    "MarketSnapshot",
    "Market",
    "MarketStore",
    "InMemoryMarketStore",
    "FeedClient",
    "StreamHandle",
    "RetryPolicy",
    "SyncCoordinator",
    "create_feed_client",
]
