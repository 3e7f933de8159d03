"""Market storage: the interface the realtime layer consumes and an in-memory implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from .models import MARKET_STATUSES, Market, MarketSnapshot, merge_snapshot, normalize_symbol


class MarketStore(ABC):
    """Persisted market rows keyed by symbol.

    Writer: SyncCoordinator only (tick path and resync).
    Readers: BroadcastDispatcher sweep, SubscriptionEngine snapshot requests.
    Implementations raise StorageUnavailable when the backend fails.
    """

    @abstractmethod
    async def find_by_symbols(self, symbols: Iterable[str]) -> list[Market]:
        """Active markets for the given symbols. Unknown symbols are skipped."""

    @abstractmethod
    async def find_active_by_symbol(self, symbol: str) -> Market | None:
        """The market for ``symbol`` if it exists and is active."""

    @abstractmethod
    async def upsert(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        """Merge ``snapshot`` into the stored row (creating an active one if absent).

        Returns the snapshot actually stored, which is the previous one when
        ``snapshot`` is older than what is already there.
        """

    @abstractmethod
    async def set_status(self, symbol: str, status: str) -> None:
        """Change a market's listing status."""


class InMemoryMarketStore(MarketStore):
    """Process-local market store.

    All mutation happens synchronously inside one coroutine step, so on a
    single event loop there is no interleaving to guard against.
    """

    def __init__(self, markets: Iterable[Market] = ()) -> None:
        self._markets: dict[str, Market] = {}
        self._version: int = 0  # Monotonically increasing; bumped on every write
        for market in markets:
            self._markets[normalize_symbol(market.symbol)] = market

    async def find_by_symbols(self, symbols: Iterable[str]) -> list[Market]:
        result = []
        for symbol in symbols:
            market = self._markets.get(symbol.upper())
            if market is not None and market.is_active:
                result.append(market)
        return result

    async def find_active_by_symbol(self, symbol: str) -> Market | None:
        market = self._markets.get(symbol.upper())
        return market if market is not None and market.is_active else None

    async def upsert(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        market = self._markets.get(snapshot.symbol)
        if market is None:
            market = Market(symbol=snapshot.symbol)
            self._markets[snapshot.symbol] = market
        merged = merge_snapshot(market.snapshot, snapshot)
        if merged is not market.snapshot:
            market.snapshot = merged
            self._version += 1
        return merged

    async def set_status(self, symbol: str, status: str) -> None:
        if status not in MARKET_STATUSES:
            raise ValueError(f"unknown market status: {status!r}")
        market = self._markets.get(symbol.upper())
        if market is None:
            raise KeyError(symbol)
        market.status = status
        self._version += 1

    def get(self, symbol: str) -> Market | None:
        """Synchronous lookup regardless of status (for tests and diagnostics)."""
        return self._markets.get(symbol.upper())

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._markets)

    def __contains__(self, symbol: str) -> bool:
        return symbol.upper() in self._markets
