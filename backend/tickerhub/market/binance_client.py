"""Binance spot API client for real market data."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

import aiohttp
import websockets

from ..errors import UpstreamError, UpstreamRateLimited, UpstreamUnavailable
from .interface import FeedClient, TickCallback
from .models import (
    Kline,
    MalformedTick,
    MarketSnapshot,
    OrderBook,
    normalize_kline,
    normalize_order_book,
    normalize_rest_ticker,
    normalize_symbol,
)
from .retry import REST_RETRY_POLICY, STREAM_RECONNECT_POLICY, RetryPolicy

logger = logging.getLogger(__name__)


class BinanceFeedClient(FeedClient):
    """FeedClient backed by the Binance spot REST API and combined ticker stream.

    REST: GET /ticker/24hr, /klines, /depth via aiohttp. Network errors and
    5xx are retried with ``rest_retry_policy`` and then surface as
    UpstreamUnavailable; 429/418 surface immediately as UpstreamRateLimited.

    Stream: one connection to ``/stream?streams=btcusdt@ticker/...`` via
    websockets, supervised by StreamHandle (reconnect after 5s, forever).
    """

    def __init__(
        self,
        rest_url: str = "https://api.binance.com/api/v3",
        ws_url: str = "wss://stream.binance.com:9443/stream",
        reconnect_policy: RetryPolicy = STREAM_RECONNECT_POLICY,
        rest_retry_policy: RetryPolicy = REST_RETRY_POLICY,
        request_timeout: float = 10.0,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(reconnect_policy)
        self._rest_url = rest_url.rstrip("/")
        self._ws_url = ws_url
        self._rest_policy = rest_retry_policy
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session: aiohttp.ClientSession | None = None
        self._connect = connect or websockets.connect

    # --- REST ---

    async def fetch_snapshot_batch(self, symbols: Iterable[str] | None = None) -> list[MarketSnapshot]:
        params = None
        if symbols is not None:
            wanted = [normalize_symbol(s) for s in symbols]
            if not wanted:
                return []
            params = {"symbols": json.dumps(wanted, separators=(",", ":"))}

        records = await self._get_json("ticker/24hr", params)
        if isinstance(records, dict):
            records = [records]

        snapshots = []
        for record in records:
            try:
                snapshots.append(normalize_rest_ticker(record))
            except MalformedTick as e:
                logger.warning("Skipping 24h ticker record: %s", e)
        logger.debug("Binance snapshot batch: %d records", len(snapshots))
        return snapshots

    async def fetch_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Kline]:
        rows = await self._get_json(
            "klines", {"symbol": normalize_symbol(symbol), "interval": interval, "limit": limit}
        )
        return [normalize_kline(row) for row in rows]

    async def fetch_order_book(self, symbol: str, limit: int = 100) -> OrderBook:
        symbol = normalize_symbol(symbol)
        payload = await self._get_json("depth", {"symbol": symbol, "limit": limit})
        return normalize_order_book(symbol, payload)

    async def close(self) -> None:
        await super().close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- Internal ---

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET with retries for UpstreamUnavailable only."""
        attempt = 0
        while True:
            try:
                return await self._request(path, params)
            except UpstreamUnavailable as e:
                attempt += 1
                if not self._rest_policy.should_retry(attempt):
                    raise
                delay = self._rest_policy.delay_for(attempt)
                logger.warning("Binance GET %s failed (%s); retry %d in %.1fs", path, e, attempt, delay)
                await asyncio.sleep(delay)

    async def _request(self, path: str, params: dict[str, Any] | None) -> Any:
        url = f"{self._rest_url}/{path}"
        try:
            async with self._get_session().get(url, params=params) as resp:
                if resp.status in (418, 429):
                    retry_after = resp.headers.get("Retry-After")
                    raise UpstreamRateLimited(
                        f"Binance rate limit on {path} (HTTP {resp.status})",
                        status=resp.status,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                if resp.status >= 500:
                    raise UpstreamUnavailable(f"Binance {path} returned HTTP {resp.status}", status=resp.status)
                if resp.status >= 400:
                    body = await resp.text()
                    raise UpstreamError(f"Binance {path} rejected request: {body[:200]}", status=resp.status)
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(f"Binance {path} unreachable: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Binance {path} returned invalid JSON: {e}") from e

    def _stream_url(self, symbols: tuple[str, ...]) -> str:
        streams = "/".join(f"{s.lower()}@ticker" for s in symbols)
        return f"{self._ws_url}?streams={streams}"

    async def _connect_once(self, symbols: tuple[str, ...], on_tick: TickCallback) -> None:
        if not symbols:
            # Nothing to stream; park until the handle is closed or replaced.
            await asyncio.Event().wait()

        async with self._connect(self._stream_url(symbols), ping_interval=20, ping_timeout=20) as ws:
            logger.info("Binance stream connected: %d symbols", len(symbols))
            async for raw in ws:
                try:
                    payload = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping non-JSON Binance frame: %.80r", raw)
                    continue
                await self._deliver(payload, on_tick)
