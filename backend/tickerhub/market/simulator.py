"""GBM-based market simulator that speaks the Binance ticker format."""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from collections.abc import Iterable

import numpy as np

from .interface import FeedClient, TickCallback
from .models import MarketSnapshot, normalize_rest_ticker, normalize_symbol
from .retry import STREAM_RECONNECT_POLICY, RetryPolicy
from .seed_prices import (
    CORRELATION_GROUPS,
    CROSS_GROUP_CORR,
    DEFAULT_CORR,
    DEFAULT_PARAMS,
    DEFAULT_SPREAD,
    INTRA_LAYER1_CORR,
    INTRA_MAJORS_CORR,
    SEED_PRICES,
    SYMBOL_PARAMS,
)

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Geometric Brownian Motion simulator for correlated crypto prices.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Crypto trades around the clock, so dt is a fraction of a 365-day year.
    Alongside the price the simulator keeps rolling 24h session stats (open,
    high, low, volume) so it can emit full ticker records.
    """

    SECONDS_PER_YEAR = 365 * 24 * 3600
    DEFAULT_DT = 1.0 / SECONDS_PER_YEAR

    def __init__(
        self,
        symbols: Iterable[str] = (),
        dt: float = DEFAULT_DT,
        event_probability: float = 0.001,
    ) -> None:
        self._dt = dt
        self._event_prob = event_probability

        self._symbols: list[str] = []
        self._prices: dict[str, float] = {}
        self._params: dict[str, dict[str, float]] = {}
        self._open: dict[str, float] = {}
        self._high: dict[str, float] = {}
        self._low: dict[str, float] = {}
        self._volume: dict[str, float] = {}

        self._cholesky: np.ndarray | None = None

        for symbol in symbols:
            self._add_symbol_internal(normalize_symbol(symbol))
        self._rebuild_cholesky()

    # --- Public API ---

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    def step(self) -> dict[str, float]:
        """Advance all symbols by one time step. Returns {symbol: new_price}."""
        n = len(self._symbols)
        if n == 0:
            return {}

        z = np.random.standard_normal(n)
        if self._cholesky is not None:
            z = self._cholesky @ z

        result: dict[str, float] = {}
        for i, symbol in enumerate(self._symbols):
            params = self._params[symbol]
            mu = params["mu"]
            sigma = params["sigma"]

            drift = (mu - 0.5 * sigma**2) * self._dt
            diffusion = sigma * math.sqrt(self._dt) * z[i]
            price = self._prices[symbol] * math.exp(drift + diffusion)

            # Occasional liquidation cascade / squeeze
            if random.random() < self._event_prob:
                shock = random.uniform(0.01, 0.04) * random.choice([-1, 1])
                price *= 1 + shock
                logger.debug("Random event on %s: %+.1f%%", symbol, shock * 100)

            self._prices[symbol] = price
            self._high[symbol] = max(self._high[symbol], price)
            self._low[symbol] = min(self._low[symbol], price)
            self._volume[symbol] += abs(z[i]) * random.uniform(0.5, 5.0)
            result[symbol] = price

        return result

    def add_symbol(self, symbol: str) -> None:
        symbol = normalize_symbol(symbol)
        if symbol in self._prices:
            return
        self._add_symbol_internal(symbol)
        self._rebuild_cholesky()

    def remove_symbol(self, symbol: str) -> None:
        symbol = normalize_symbol(symbol)
        if symbol not in self._prices:
            return
        self._symbols.remove(symbol)
        for table in (self._prices, self._params, self._open, self._high, self._low, self._volume):
            del table[symbol]
        self._rebuild_cholesky()

    def get_price(self, symbol: str) -> float | None:
        return self._prices.get(symbol.upper())

    def ticker(self, symbol: str, event_time_ms: int | None = None) -> dict[str, str | int]:
        """Current state as a Binance ``24hrTicker`` event."""
        price = self._prices[symbol]
        open_ = self._open[symbol]
        half_spread = price * DEFAULT_SPREAD / 2
        return {
            "e": "24hrTicker",
            "E": event_time_ms if event_time_ms is not None else int(time.time() * 1000),
            "s": symbol,
            "p": f"{price - open_:.8f}",
            "P": f"{(price - open_) / open_ * 100:.4f}",
            "c": f"{price:.8f}",
            "b": f"{price - half_spread:.8f}",
            "a": f"{price + half_spread:.8f}",
            "o": f"{open_:.8f}",
            "h": f"{self._high[symbol]:.8f}",
            "l": f"{self._low[symbol]:.8f}",
            "v": f"{self._volume[symbol]:.4f}",
        }

    # --- Internals ---

    def _add_symbol_internal(self, symbol: str) -> None:
        if symbol in self._prices:
            return
        seed = SEED_PRICES.get(symbol, random.uniform(1.0, 100.0))
        self._symbols.append(symbol)
        self._prices[symbol] = seed
        self._params[symbol] = SYMBOL_PARAMS.get(symbol, dict(DEFAULT_PARAMS))
        self._open[symbol] = seed
        self._high[symbol] = seed
        self._low[symbol] = seed
        self._volume[symbol] = 0.0

    def _rebuild_cholesky(self) -> None:
        n = len(self._symbols)
        if n <= 1:
            self._cholesky = None
            return

        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self._pairwise_correlation(self._symbols[i], self._symbols[j])
                corr[i, j] = rho
                corr[j, i] = rho

        self._cholesky = np.linalg.cholesky(corr)

    @staticmethod
    def _pairwise_correlation(s1: str, s2: str) -> float:
        majors = CORRELATION_GROUPS["majors"]
        layer1 = CORRELATION_GROUPS["layer1"]
        known = majors | layer1

        if s1 not in known or s2 not in known:
            return DEFAULT_CORR
        if s1 in majors and s2 in majors:
            return INTRA_MAJORS_CORR
        if s1 in layer1 and s2 in layer1:
            return INTRA_LAYER1_CORR
        return CROSS_GROUP_CORR


class SimulatorFeedClient(FeedClient):
    """FeedClient backed by GBMSimulator, for development without an exchange.

    Emits Binance-shaped ticker events every ``update_interval`` seconds so
    that the same normalization path as the live feed is exercised.
    """

    def __init__(
        self,
        update_interval: float = 1.0,
        event_probability: float = 0.001,
        reconnect_policy: RetryPolicy = STREAM_RECONNECT_POLICY,
    ) -> None:
        super().__init__(reconnect_policy)
        self._interval = update_interval
        self._sim = GBMSimulator(event_probability=event_probability)

    @property
    def simulator(self) -> GBMSimulator:
        return self._sim

    async def fetch_snapshot_batch(self, symbols: Iterable[str] | None = None) -> list[MarketSnapshot]:
        """Snapshots for seeded or already simulated symbols. Unknown symbols are skipped."""
        wanted = [normalize_symbol(s) for s in symbols] if symbols is not None else self._sim.symbols
        now_ms = int(time.time() * 1000)
        snapshots = []
        for symbol in wanted:
            if symbol not in SEED_PRICES and self._sim.get_price(symbol) is None:
                continue
            self._sim.add_symbol(symbol)
            ticker = self._sim.ticker(symbol, now_ms)
            snapshots.append(
                normalize_rest_ticker(
                    {
                        "symbol": ticker["s"],
                        "lastPrice": ticker["c"],
                        "bidPrice": ticker["b"],
                        "askPrice": ticker["a"],
                        "volume": ticker["v"],
                        "priceChange": ticker["p"],
                        "priceChangePercent": ticker["P"],
                        "highPrice": ticker["h"],
                        "lowPrice": ticker["l"],
                        "openPrice": ticker["o"],
                        "closeTime": now_ms,
                    }
                )
            )
        return snapshots

    async def _connect_once(self, symbols: tuple[str, ...], on_tick: TickCallback) -> None:
        for symbol in symbols:
            self._sim.add_symbol(symbol)
        streamed = set(symbols)
        logger.info("Simulator stream started with %d symbols", len(symbols))
        while True:
            await asyncio.sleep(self._interval)
            try:
                prices = self._sim.step()
            except Exception:
                logger.exception("Simulator step failed")
                continue
            now_ms = int(time.time() * 1000)
            events = [self._sim.ticker(s, now_ms) for s in prices if s in streamed]
            await self._deliver(events, on_tick)
