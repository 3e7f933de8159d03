"""Data models for market data."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any

# Optional ticker fields: (snapshot attribute, wire name)
_OPTIONAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("bid", "bid"),
    ("ask", "ask"),
    ("volume_24h", "volume24h"),
    ("change_24h", "change24h"),
    ("change_percent_24h", "changePercent24h"),
    ("high_24h", "high24h"),
    ("low_24h", "low24h"),
    ("open_24h", "open24h"),
)

# Binance 24h ticker stream keys
_STREAM_KEYS: dict[str, str] = {
    "bid": "b",
    "ask": "a",
    "volume_24h": "v",
    "change_24h": "p",
    "change_percent_24h": "P",
    "high_24h": "h",
    "low_24h": "l",
    "open_24h": "o",
}

# Binance GET /ticker/24hr keys
_REST_KEYS: dict[str, str] = {
    "bid": "bidPrice",
    "ask": "askPrice",
    "volume_24h": "volume",
    "change_24h": "priceChange",
    "change_percent_24h": "priceChangePercent",
    "high_24h": "highPrice",
    "low_24h": "lowPrice",
    "open_24h": "openPrice",
}

MARKET_STATUSES = ("active", "inactive", "suspended", "delisted")


class MalformedTick(ValueError):
    """An upstream payload that cannot be turned into a snapshot."""


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """Latest known state of one symbol. None means the upstream did not say."""

    symbol: str
    last_price: float
    bid: float | None = None
    ask: float | None = None
    volume_24h: float | None = None
    change_24h: float | None = None
    change_percent_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    open_24h: float | None = None
    last_update_timestamp: float = field(default_factory=time.time)  # Unix seconds

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON / WebSocket transmission."""
        data: dict[str, Any] = {"symbol": self.symbol, "lastPrice": self.last_price}
        for attr, wire in _OPTIONAL_FIELDS:
            data[wire] = getattr(self, attr)
        data["lastUpdate"] = self.last_update_timestamp
        return data


@dataclass(slots=True)
class Market:
    """Persisted market row: a symbol, its listing status and its snapshot."""

    symbol: str
    status: str = "active"
    name: str = ""
    snapshot: MarketSnapshot | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name or self.symbol,
            "status": self.status,
            "marketData": self.snapshot.to_dict() if self.snapshot else None,
        }


@dataclass(frozen=True, slots=True)
class Kline:
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int
    quote_asset_volume: float
    number_of_trades: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "openTime": self.open_time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "closeTime": self.close_time,
            "quoteAssetVolume": self.quote_asset_volume,
            "numberOfTrades": self.number_of_trades,
        }


@dataclass(frozen=True, slots=True)
class OrderBook:
    symbol: str
    last_update_id: int
    bids: tuple[tuple[float, float], ...]
    asks: tuple[tuple[float, float], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "lastUpdateId": self.last_update_id,
            "bids": [list(level) for level in self.bids],
            "asks": [list(level) for level in self.asks],
        }


def normalize_symbol(symbol: Any) -> str:
    """Canonical symbol form: stripped, uppercase. Raises ValueError on junk."""
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValueError(f"invalid symbol: {symbol!r}")
    return symbol.strip().upper()


def _to_float(value: Any) -> float | None:
    """Binance sends numbers as strings. Missing or non-finite values become None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _build(payload: dict, symbol_key: str, price_key: str, keys: dict[str, str], ts_key: str) -> MarketSnapshot:
    if not isinstance(payload, dict):
        raise MalformedTick(f"expected an object, got {type(payload).__name__}")
    try:
        symbol = normalize_symbol(payload.get(symbol_key))
    except ValueError as e:
        raise MalformedTick(str(e)) from None
    last_price = _to_float(payload.get(price_key))
    if last_price is None:
        raise MalformedTick(f"{symbol}: missing or invalid last price")

    event_ms = _to_float(payload.get(ts_key))
    timestamp = event_ms / 1000.0 if event_ms else time.time()

    values = {attr: _to_float(payload.get(key)) for attr, key in keys.items()}
    return MarketSnapshot(symbol=symbol, last_price=last_price, last_update_timestamp=timestamp, **values)


def normalize_stream_ticker(payload: dict) -> MarketSnapshot:
    """Normalize a ``<symbol>@ticker`` stream event. ``E`` (ms) is the source time."""
    return _build(payload, "s", "c", _STREAM_KEYS, "E")


def normalize_rest_ticker(payload: dict) -> MarketSnapshot:
    """Normalize one record of GET /ticker/24hr. ``closeTime`` (ms) is the source time."""
    return _build(payload, "symbol", "lastPrice", _REST_KEYS, "closeTime")


def normalize_kline(row: list) -> Kline:
    try:
        return Kline(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]),
            quote_asset_volume=float(row[7]),
            number_of_trades=int(row[8]),
        )
    except (IndexError, TypeError, ValueError) as e:
        raise MalformedTick(f"bad kline row: {e}") from None


def normalize_order_book(symbol: str, payload: dict) -> OrderBook:
    try:
        return OrderBook(
            symbol=normalize_symbol(symbol),
            last_update_id=int(payload.get("lastUpdateId", 0)),
            bids=tuple((float(p), float(q)) for p, q in payload.get("bids", [])),
            asks=tuple((float(p), float(q)) for p, q in payload.get("asks", [])),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise MalformedTick(f"bad order book for {symbol}: {e}") from None


def merge_snapshot(current: MarketSnapshot | None, incoming: MarketSnapshot) -> MarketSnapshot:
    """Combine a stored snapshot with a newer observation.

    Last writer wins by ``last_update_timestamp``, not by call order: an
    incoming value older than ``current`` leaves ``current`` untouched. Fields
    the incoming tick did not carry keep their stored values.
    """
    if current is None:
        return incoming
    if incoming.last_update_timestamp < current.last_update_timestamp:
        return current
    filled = {
        f.name: getattr(current, f.name)
        for f in fields(MarketSnapshot)
        if getattr(incoming, f.name) is None
    }
    return replace(incoming, **filled) if filled else incoming
