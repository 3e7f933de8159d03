"""Abstract interface for upstream market feeds."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

from .models import MalformedTick, MarketSnapshot, normalize_stream_ticker, normalize_symbol
from .retry import STREAM_RECONNECT_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

TickCallback = Callable[[MarketSnapshot], Awaitable[None]]


class StreamHandle:
    """Supervisor for one upstream stream.

    Runs ``connect_once`` (one connection lifetime) and, whenever it ends for
    any reason, waits ``policy.delay_for(attempt)`` and runs it again with the
    same symbols and callback. Only ``close()`` stops it.
    """

    def __init__(
        self,
        symbols: Sequence[str],
        connect_once: Callable[[], Awaitable[None]],
        policy: RetryPolicy = STREAM_RECONNECT_POLICY,
        name: str = "feed-stream",
    ) -> None:
        self.symbols: tuple[str, ...] = tuple(symbols)
        self.reconnects: int = 0
        self._connect_once = connect_once
        self._policy = policy
        self._task = asyncio.create_task(self._supervise(), name=name)

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def close(self) -> None:
        """Cancel the supervisor and wait for it. Safe to call multiple times."""
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _supervise(self) -> None:
        attempt = 0
        while True:
            try:
                await self._connect_once()
                logger.warning("Upstream stream for %d symbols closed", len(self.symbols))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Upstream stream for %d symbols failed: %s", len(self.symbols), e)

            attempt += 1
            if not self._policy.should_retry(attempt):
                logger.error("Upstream stream gave up after %d attempts", attempt)
                return
            delay = self._policy.delay_for(attempt)
            logger.info("Reopening upstream stream in %.1fs (attempt %d)", delay, attempt)
            await asyncio.sleep(delay)
            self.reconnects += 1


class FeedClient(ABC):
    """Contract for upstream market data providers.

    Lifecycle:
        feed = create_feed_client(settings)
        snapshots = await feed.fetch_snapshot_batch(["BTCUSDT", "ETHUSDT"])
        handle = await feed.open_stream(["BTCUSDT", "ETHUSDT"], on_tick)
        # ... app runs; on_tick receives normalized MarketSnapshot values ...
        await feed.close()

    There is at most one open stream per client: ``open_stream`` closes the
    previous handle before opening the next one.
    """

    def __init__(self, reconnect_policy: RetryPolicy = STREAM_RECONNECT_POLICY) -> None:
        self._reconnect_policy = reconnect_policy
        self._stream: StreamHandle | None = None

    @abstractmethod
    async def fetch_snapshot_batch(self, symbols: Iterable[str] | None = None) -> list[MarketSnapshot]:
        """Request/response snapshot of the 24h ticker for ``symbols`` (all when None).

        Raises UpstreamUnavailable on network errors or 5xx, UpstreamRateLimited on 429.
        """

    @abstractmethod
    async def _connect_once(self, symbols: tuple[str, ...], on_tick: TickCallback) -> None:
        """Hold one streaming connection open until it ends."""

    async def open_stream(self, symbols: Iterable[str], on_tick: TickCallback) -> StreamHandle:
        """Open one multiplexed ticker stream for ``symbols``, replacing any previous one."""
        if self._stream is not None:
            await self._stream.close()
        wanted = tuple(dict.fromkeys(normalize_symbol(s) for s in symbols))
        self._stream = StreamHandle(
            wanted,
            lambda: self._connect_once(wanted, on_tick),
            self._reconnect_policy,
            name=f"{type(self).__name__}-stream",
        )
        logger.info("Opened upstream stream for %d symbols", len(wanted))
        return self._stream

    async def close(self) -> None:
        """Close the stream (if any) and release resources. Idempotent."""
        if self._stream is not None:
            await self._stream.close()
            self._stream = None

    def get_streamed_symbols(self) -> list[str]:
        if self._stream is None or self._stream.closed:
            return []
        return list(self._stream.symbols)

    @property
    def stream(self) -> StreamHandle | None:
        return self._stream

    async def _deliver(self, payload: Any, on_tick: TickCallback) -> int:
        """Normalize one decoded stream payload and hand each tick to ``on_tick``.

        Never raises: a bad payload or a failing callback is logged and dropped
        so that one message cannot kill the stream.
        """
        if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
            payload = payload["data"]  # combined-stream envelope
        items = payload if isinstance(payload, list) else [payload]

        delivered = 0
        for item in items:
            try:
                tick = normalize_stream_ticker(item)
            except MalformedTick as e:
                logger.warning("Dropping malformed upstream tick: %s", e)
                continue
            try:
                await on_tick(tick)
                delivered += 1
            except Exception:
                logger.exception("Tick handler failed for %s", tick.symbol)
        return delivered
