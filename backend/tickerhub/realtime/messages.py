"""Client → server message variants and the server → client envelope."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from ..errors import MalformedMessage

DEFAULT_CHANNELS: tuple[str, ...] = ("ticker",)
SUPPORTED_CHANNELS: frozenset[str] = frozenset(DEFAULT_CHANNELS)


@dataclass(frozen=True)
class Subscribe:
    symbols: tuple[str, ...]
    channels: tuple[str, ...] = DEFAULT_CHANNELS


@dataclass(frozen=True)
class Unsubscribe:
    symbols: tuple[str, ...] | Literal["all"]
    channels: tuple[str, ...] = DEFAULT_CHANNELS


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class GetMarketData:
    symbols: tuple[str, ...]


@dataclass(frozen=True)
class GetTicker:
    symbol: str


ClientMessage = Subscribe | Unsubscribe | Ping | Pong | GetMarketData | GetTicker


def _symbol_list(value: Any, field_name: str) -> tuple[str, ...]:
    # Older clients send a bare string instead of a list
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(s, str) and s.strip() for s in value):
        raise MalformedMessage(f"'{field_name}' must be a list of symbols")
    return tuple(dict.fromkeys(s.strip().upper() for s in value))


def _channel_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return DEFAULT_CHANNELS
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not value or not all(isinstance(c, str) and c for c in value):
        raise MalformedMessage("'channels' must be a non-empty list of channel names")
    return tuple(dict.fromkeys(c.strip().lower() for c in value))


def parse_message(raw: str | bytes) -> ClientMessage:
    """Decode one inbound frame. Raises MalformedMessage for anything unusable."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"invalid JSON: {e}") from None
    if not isinstance(data, dict):
        raise MalformedMessage("message must be a JSON object")

    kind = data.get("type")
    # Older clients nest arguments under "payload"
    body = data.get("payload") if isinstance(data.get("payload"), dict) else data

    if kind == "subscribe":
        return Subscribe(_symbol_list(body.get("symbols"), "symbols"), _channel_list(body.get("channels")))
    if kind == "unsubscribe":
        symbols = body.get("symbols")
        channels = _channel_list(body.get("channels"))
        if symbols == "all":
            return Unsubscribe("all", channels)
        return Unsubscribe(_symbol_list(symbols, "symbols"), channels)
    if kind == "ping":
        return Ping()
    if kind == "pong":
        return Pong()
    if kind == "get_market_data":
        return GetMarketData(_symbol_list(body.get("symbols"), "symbols"))
    if kind == "get_ticker":
        symbol = body.get("symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            raise MalformedMessage("'symbol' must be a non-empty string")
        return GetTicker(symbol.strip().upper())
    if kind is None:
        raise MalformedMessage("missing 'type'")
    raise MalformedMessage(f"unsupported message type: {kind!r}")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def envelope(kind: str, data: Any = None) -> str:
    """Serialize a server → client frame: ``{"type", "data"?, "timestamp"}``."""
    message: dict[str, Any] = {"type": kind}
    if data is not None:
        message["data"] = data
    message["timestamp"] = utc_timestamp()
    return json.dumps(message, allow_nan=False)
