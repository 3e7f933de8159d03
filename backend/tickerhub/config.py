"""Environment-driven settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

DEFAULT_TRACKED_SYMBOLS: tuple[str, ...] = (
    "BTCUSDT",
    "ETHUSDT",
    "BNBUSDT",
    "ADAUSDT",
    "SOLUSDT",
    "DOTUSDT",
    "LINKUSDT",
    "AVAXUSDT",
    "MATICUSDT",
    "ATOMUSDT",
)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def parse_symbols(raw: str) -> tuple[str, ...]:
    """Split a comma-separated symbol list, uppercased and de-duplicated in order."""
    seen: dict[str, None] = {}
    for part in raw.split(","):
        symbol = part.strip().upper()
        if symbol:
            seen[symbol] = None
    return tuple(seen)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Build with ``Settings.from_env()`` in production."""

    jwt_secret: str = ""
    jwt_issuer: str = "laevitas-trading"
    jwt_audience: str = "laevitas-users"
    feed_source: str = "simulator"
    binance_rest_url: str = "https://api.binance.com/api/v3"
    binance_ws_url: str = "wss://stream.binance.com:9443/stream"
    tracked_symbols: tuple[str, ...] = field(default=DEFAULT_TRACKED_SYMBOLS)
    resync_interval: float = 300.0
    sweep_interval: float = 1.0
    heartbeat_interval: float = 30.0
    stream_reconnect_delay: float = 5.0
    restart_delay: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        symbols = parse_symbols(_env("TRACKED_SYMBOLS")) or DEFAULT_TRACKED_SYMBOLS
        return cls(
            jwt_secret=_env("JWT_SECRET"),
            jwt_issuer=_env("JWT_ISSUER", cls.jwt_issuer) or cls.jwt_issuer,
            jwt_audience=_env("JWT_AUDIENCE", cls.jwt_audience) or cls.jwt_audience,
            feed_source=(_env("FEED_SOURCE") or cls.feed_source).lower(),
            binance_rest_url=_env("BINANCE_REST_URL") or cls.binance_rest_url,
            binance_ws_url=_env("BINANCE_WS_URL") or cls.binance_ws_url,
            tracked_symbols=symbols,
            resync_interval=_env_float("RESYNC_INTERVAL_SECONDS", cls.resync_interval),
            sweep_interval=_env_float("SWEEP_INTERVAL_SECONDS", cls.sweep_interval),
            heartbeat_interval=_env_float("HEARTBEAT_INTERVAL_SECONDS", cls.heartbeat_interval),
            stream_reconnect_delay=_env_float(
                "STREAM_RECONNECT_DELAY_SECONDS", cls.stream_reconnect_delay
            ),
            log_level=(_env("LOG_LEVEL") or cls.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single root handler. Safe to call more than once."""
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    # websockets logs every frame at DEBUG
    numeric = logging.getLevelName(level)
    if isinstance(numeric, int) and numeric < logging.INFO:
        logging.getLogger("websockets").setLevel(logging.INFO)
