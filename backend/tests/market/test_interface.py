"""Tests for StreamHandle supervision and the FeedClient base behavior."""

import asyncio

import pytest

from tickerhub.market.interface import FeedClient, StreamHandle
from tickerhub.market.models import MarketSnapshot
from tickerhub.market.retry import RetryPolicy

FAST = RetryPolicy.fixed(0.01)


class ScriptedFeed(FeedClient):
    """Each connection delivers ``frames`` and then drops."""

    def __init__(self, frames=(), policy: RetryPolicy = FAST):
        super().__init__(policy)
        self.frames = list(frames)
        self.connections: list[tuple[str, ...]] = []

    async def fetch_snapshot_batch(self, symbols=None):
        return []

    async def _connect_once(self, symbols, on_tick):
        self.connections.append(symbols)
        for frame in self.frames:
            await self._deliver(frame, on_tick)
        raise ConnectionError("upstream dropped")


@pytest.mark.asyncio
class TestStreamHandle:
    """The supervisor reopens the stream until closed."""

    async def test_reconnects_with_same_symbols(self):
        """A dropped connection is reopened with the identical symbol set."""
        feed = ScriptedFeed()
        handle = await feed.open_stream(["btcusdt", "ETHUSDT"], lambda tick: asyncio.sleep(0))
        await asyncio.sleep(0.1)
        await handle.close()

        assert len(feed.connections) >= 3
        assert set(feed.connections) == {("BTCUSDT", "ETHUSDT")}
        assert handle.reconnects >= 2

    async def test_close_is_idempotent(self):
        """close() stops the supervisor and can be repeated."""
        feed = ScriptedFeed()
        handle = await feed.open_stream(["BTCUSDT"], lambda tick: asyncio.sleep(0))
        await handle.close()
        await handle.close()
        assert handle.closed

    async def test_gives_up_after_max_attempts(self):
        """A bounded policy ends the supervisor."""
        attempts = 0

        async def connect_once():
            nonlocal attempts
            attempts += 1
            raise OSError("refused")

        handle = StreamHandle(["BTCUSDT"], connect_once, RetryPolicy.fixed(0.0, max_attempts=2))
        await asyncio.sleep(0.05)
        assert handle.closed
        assert attempts == 3

    async def test_open_stream_replaces_previous(self):
        """Only one stream per client: opening a new one closes the old one."""
        feed = ScriptedFeed(policy=RetryPolicy.fixed(60.0))
        first = await feed.open_stream(["BTCUSDT"], lambda tick: asyncio.sleep(0))
        second = await feed.open_stream(["BTCUSDT", "SOLUSDT"], lambda tick: asyncio.sleep(0))
        assert first.closed
        assert not second.closed
        assert feed.get_streamed_symbols() == ["BTCUSDT", "SOLUSDT"]
        await feed.close()
        assert feed.get_streamed_symbols() == []


@pytest.mark.asyncio
class TestDeliver:
    """Normalization and isolation in FeedClient._deliver."""

    async def test_unwraps_combined_stream_envelope(self):
        """{"stream", "data"} envelopes are unwrapped."""
        feed = ScriptedFeed()
        ticks: list[MarketSnapshot] = []

        async def on_tick(tick):
            ticks.append(tick)

        delivered = await feed._deliver({"stream": "btcusdt@ticker", "data": {"s": "BTCUSDT", "c": "1.0", "E": 1}}, on_tick)
        assert delivered == 1
        assert ticks[0].symbol == "BTCUSDT"

    async def test_malformed_items_are_dropped(self):
        """A bad item in a batch does not stop the good ones."""
        feed = ScriptedFeed()
        ticks = []

        async def on_tick(tick):
            ticks.append(tick)

        delivered = await feed._deliver([{"s": "BTCUSDT"}, {"s": "ETHUSDT", "c": "2.0"}], on_tick)
        assert delivered == 1
        assert [t.symbol for t in ticks] == ["ETHUSDT"]

    async def test_callback_failure_does_not_raise(self):
        """A failing tick handler is logged, not propagated."""
        feed = ScriptedFeed()

        async def on_tick(tick):
            raise RuntimeError("boom")

        assert await feed._deliver({"s": "BTCUSDT", "c": "1.0"}, on_tick) == 0

    async def test_stream_keeps_delivering_across_reconnects(self):
        """Ticks arrive on every reconnect through the same callback."""
        feed = ScriptedFeed(frames=[{"s": "BTCUSDT", "c": "1.0", "E": 1000}])
        ticks = []

        async def on_tick(tick):
            ticks.append(tick)

        handle = await feed.open_stream(["BTCUSDT"], on_tick)
        await asyncio.sleep(0.1)
        await handle.close()
        assert len(ticks) >= 2
