"""Subscription engine: turns inbound client messages into registry changes and replies."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Literal

from ..errors import MalformedMessage, StorageUnavailable
from ..market.store import MarketStore
from ..market.watchlists import WatchlistProvider
from .dispatcher import BroadcastDispatcher
from .messages import (
    DEFAULT_CHANNELS,
    SUPPORTED_CHANNELS,
    ClientMessage,
    GetMarketData,
    GetTicker,
    Ping,
    Pong,
    Subscribe,
    Unsubscribe,
    parse_message,
)
from .registry import ClientConnection, ConnectionRegistry

logger = logging.getLogger(__name__)


class SubscriptionEngine:
    """Handles one connection's inbound frames.

    The gateway awaits ``handle`` for each frame before reading the next one,
    so a connection's subscribe/unsubscribe sequence is applied in arrival
    order. Problems with a frame are answered with an ``error`` frame to that
    connection only; the connection stays open.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: BroadcastDispatcher,
        store: MarketStore,
        watchlists: WatchlistProvider | None = None,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._store = store
        self._watchlists = watchlists

    async def handle(self, connection: ClientConnection, raw: str | bytes) -> None:
        if connection.connection_id not in self._registry:
            return
        try:
            message = parse_message(raw)
        except MalformedMessage as e:
            logger.info("Malformed message from %s: %s", connection.connection_id, e)
            await self._error(connection, str(e))
            return

        try:
            await self._dispatch(connection, message)
        except StorageUnavailable as e:
            logger.warning("Storage failure handling %s: %s", type(message).__name__, e)
            await self._error(connection, "market data temporarily unavailable")
        except Exception:
            logger.exception("Error handling %s from %s", type(message).__name__, connection.connection_id)
            await self._error(connection, "error while processing message")

    async def subscribe_watchlist(self, connection: ClientConnection) -> list[str]:
        """Best-effort initial subscription to the user's watchlist symbols."""
        if self._watchlists is None:
            return []
        try:
            symbols = await self._watchlists.find_symbols_for_user(connection.user_id)
            if not symbols:
                return []
            return await self.subscribe(connection, sorted(symbols), DEFAULT_CHANNELS)
        except Exception as e:
            logger.warning("Could not load watchlists for user %s: %s", connection.user_id, e)
            return []

    async def subscribe(
        self,
        connection: ClientConnection,
        symbols: Sequence[str],
        channels: Sequence[str] = DEFAULT_CHANNELS,
    ) -> list[str]:
        """Subscribe to every active market among ``symbols``. Returns the accepted symbols."""
        accepted_channels = [c for c in channels if c in SUPPORTED_CHANNELS]
        if not accepted_channels:
            await self._error(connection, f"no supported channels in {list(channels)}")
            return []

        markets = []
        for symbol in symbols:
            market = await self._store.find_active_by_symbol(symbol)
            if market is not None:
                markets.append(market)
        if connection.connection_id not in self._registry:
            return []  # went away while storage was being read

        accepted = [m.symbol for m in markets]
        self._registry.subscribe(
            connection.connection_id,
            [(symbol, channel) for symbol in accepted for channel in accepted_channels],
        )
        await self._dispatcher.send(
            connection,
            "subscription_success",
            {"symbols": accepted, "channels": accepted_channels},
        )
        logger.debug("Client %s subscribed to %s", connection.connection_id, accepted)

        # Current state right away instead of waiting for the next tick
        for market in markets:
            if market.snapshot is not None:
                await self._dispatcher.send(connection, "ticker", market.snapshot.to_dict())
        return accepted

    # --- Internal ---

    async def _dispatch(self, connection: ClientConnection, message: ClientMessage) -> None:
        match message:
            case Subscribe(symbols=symbols, channels=channels):
                await self.subscribe(connection, symbols, channels)
            case Unsubscribe(symbols=symbols, channels=channels):
                await self._unsubscribe(connection, symbols, channels)
            case Ping():
                self._registry.record_liveness(connection.connection_id)
                await self._dispatcher.send(connection, "pong")
            case Pong():
                self._registry.record_liveness(connection.connection_id)
            case GetMarketData(symbols=symbols):
                markets = await self._store.find_by_symbols(symbols)
                await self._dispatcher.send(
                    connection,
                    "market_data",
                    [{"symbol": m.symbol, "marketData": m.snapshot.to_dict() if m.snapshot else None} for m in markets],
                )
            case GetTicker(symbol=symbol):
                market = await self._store.find_active_by_symbol(symbol)
                if market is None or market.snapshot is None:
                    await self._error(connection, f"market not found: {symbol}")
                else:
                    await self._dispatcher.send(connection, "ticker", market.snapshot.to_dict())
            case _:
                raise TypeError(f"unhandled message variant: {message!r}")

    async def _unsubscribe(
        self, connection: ClientConnection, symbols: tuple[str, ...] | Literal["all"], channels: Sequence[str]
    ) -> None:
        cid = connection.connection_id
        if symbols == "all":
            self._registry.unsubscribe_all(cid)
        else:
            self._registry.unsubscribe(cid, [(s, c) for s in symbols for c in channels])
        await self._dispatcher.send(
            connection,
            "unsubscription_success",
            {"symbols": symbols if symbols == "all" else list(symbols), "channels": list(channels)},
        )

    async def _error(self, connection: ClientConnection, message: str) -> None:
        await self._dispatcher.send(connection, "error", {"message": message})
