"""Factory for creating upstream feed clients."""

from __future__ import annotations

import logging

from ..config import Settings
from .interface import FeedClient
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def create_feed_client(settings: Settings) -> FeedClient:
    """Create the appropriate feed client for the configured source.

    - FEED_SOURCE=binance → BinanceFeedClient (real market data)
    - Otherwise → SimulatorFeedClient (GBM simulation)

    Returns a client with no open stream. The SyncCoordinator opens it.
    """
    reconnect_policy = RetryPolicy.fixed(settings.stream_reconnect_delay)

    if settings.feed_source == "binance":
        from .binance_client import BinanceFeedClient

        logger.info("Market feed: Binance (%s)", settings.binance_rest_url)
        return BinanceFeedClient(
            rest_url=settings.binance_rest_url,
            ws_url=settings.binance_ws_url,
            reconnect_policy=reconnect_policy,
        )
    else:
        from .simulator import SimulatorFeedClient

        logger.info("Market feed: GBM Simulator")
        return SimulatorFeedClient(reconnect_policy=reconnect_policy)
