"""Tests for BinanceFeedClient (mocked HTTP and WebSocket)."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from tickerhub.errors import UpstreamError, UpstreamRateLimited, UpstreamUnavailable
from tickerhub.market.binance_client import BinanceFeedClient
from tickerhub.market.retry import RetryPolicy


class FakeResponse:
    def __init__(self, status=200, body=None, headers=None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body

    async def text(self):
        return self._body if isinstance(self._body, str) else json.dumps(self._body)


class FakeSession:
    """Replays responses in order and records the requests."""

    closed = False

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


class FakeSocket:
    def __init__(self, frames):
        self.frames = frames

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            yield frame


def _client(*responses) -> tuple[BinanceFeedClient, FakeSession]:
    client = BinanceFeedClient(rest_retry_policy=RetryPolicy.fixed(0.0, max_attempts=2))
    session = FakeSession(*responses)
    client._session = session
    return client, session


TICKER = {"symbol": "BTCUSDT", "lastPrice": "64000.0", "closeTime": 1707580800000, "priceChange": "10.0"}


@pytest.mark.asyncio
class TestBinanceRest:
    """REST snapshot calls and HTTP error mapping."""

    async def test_snapshot_batch(self):
        """The symbols filter is sent as a compact JSON array."""
        client, session = _client(FakeResponse(body=[TICKER]))
        snapshots = await client.fetch_snapshot_batch(["btcusdt"])

        assert [s.symbol for s in snapshots] == ["BTCUSDT"]
        assert snapshots[0].change_24h == 10.0
        url, params = session.requests[0]
        assert url.endswith("/ticker/24hr")
        assert params == {"symbols": '["BTCUSDT"]'}

    async def test_snapshot_batch_all_symbols(self):
        """With no filter, every market is requested."""
        client, session = _client(FakeResponse(body=[TICKER]))
        await client.fetch_snapshot_batch()
        assert session.requests[0][1] is None

    async def test_empty_symbol_list_skips_request(self):
        """An empty tracked set does not hit the exchange."""
        client, session = _client()
        assert await client.fetch_snapshot_batch([]) == []
        assert session.requests == []

    async def test_malformed_records_skipped(self):
        """Records without a price are dropped, the rest kept."""
        client, _ = _client(FakeResponse(body=[TICKER, {"symbol": "BAD"}]))
        snapshots = await client.fetch_snapshot_batch(["BTCUSDT", "BAD"])
        assert [s.symbol for s in snapshots] == ["BTCUSDT"]

    async def test_rate_limit(self):
        """429 surfaces immediately as UpstreamRateLimited with Retry-After."""
        client, session = _client(FakeResponse(status=429, headers={"Retry-After": "30"}))
        with pytest.raises(UpstreamRateLimited) as excinfo:
            await client.fetch_snapshot_batch(["BTCUSDT"])
        assert excinfo.value.retry_after == 30.0
        assert len(session.requests) == 1

    async def test_ip_ban_is_rate_limit(self):
        """418 is treated like 429."""
        client, _ = _client(FakeResponse(status=418))
        with pytest.raises(UpstreamRateLimited):
            await client.fetch_snapshot_batch(["BTCUSDT"])

    async def test_server_error_retried_then_raised(self):
        """5xx is retried per policy, then surfaces as UpstreamUnavailable."""
        client, session = _client(FakeResponse(status=503), FakeResponse(status=502), FakeResponse(status=500))
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_snapshot_batch(["BTCUSDT"])
        assert len(session.requests) == 3

    async def test_network_error_recovers(self):
        """A transient connection error followed by success returns data."""
        client, _ = _client(aiohttp.ClientConnectionError("reset"), FakeResponse(body=[TICKER]))
        snapshots = await client.fetch_snapshot_batch(["BTCUSDT"])
        assert len(snapshots) == 1

    async def test_client_error(self):
        """4xx other than rate limits is an UpstreamError, not retried."""
        client, session = _client(FakeResponse(status=400, body='{"code":-1121,"msg":"Invalid symbol."}'))
        with pytest.raises(UpstreamError) as excinfo:
            await client.fetch_snapshot_batch(["NOPE"])
        assert not isinstance(excinfo.value, UpstreamUnavailable)
        assert excinfo.value.status == 400
        assert len(session.requests) == 1

    async def test_invalid_json(self):
        """An unparseable body is an UpstreamError."""
        client, _ = _client(FakeResponse(body="<html>"))
        with pytest.raises(UpstreamError):
            await client.fetch_snapshot_batch(["BTCUSDT"])

    async def test_klines_and_order_book(self):
        """Klines and depth go through the same request path."""
        row = [1, "1", "2", "0.5", "1.5", "10", 2, "15", 3]
        client, session = _client(
            FakeResponse(body=[row]),
            FakeResponse(body={"lastUpdateId": 5, "bids": [["1", "2"]], "asks": []}),
        )
        klines = await client.fetch_klines("btcusdt", interval="1m", limit=1)
        book = await client.fetch_order_book("btcusdt", limit=5)

        assert klines[0].close == 1.5
        assert book.last_update_id == 5
        assert session.requests[0][1] == {"symbol": "BTCUSDT", "interval": "1m", "limit": 1}
        assert session.requests[1][1] == {"symbol": "BTCUSDT", "limit": 5}

    async def test_close_closes_session(self):
        """close() releases the HTTP session."""
        client, session = _client()
        await client.close()
        assert session.closed

    async def test_retries_only_unavailable(self):
        """_get_json retries UpstreamUnavailable and nothing else."""
        client = BinanceFeedClient(rest_retry_policy=RetryPolicy.fixed(0.0, max_attempts=2))
        request = AsyncMock(side_effect=[UpstreamUnavailable("down"), [TICKER]])
        with patch.object(client, "_request", request):
            result = await client._get_json("ticker/24hr")
        assert result == [TICKER]
        assert request.await_count == 2


@pytest.mark.asyncio
class TestBinanceStream:
    """Combined ticker stream handling."""

    async def test_stream_url(self):
        """One combined stream with a lower-case @ticker entry per symbol."""
        client = BinanceFeedClient(ws_url="wss://example/stream")
        assert client._stream_url(("BTCUSDT", "ETHUSDT")) == "wss://example/stream?streams=btcusdt@ticker/ethusdt@ticker"

    async def test_stream_delivers_ticks(self):
        """Frames are decoded, unwrapped and normalized; junk is skipped."""
        frames = [
            json.dumps({"stream": "btcusdt@ticker", "data": {"s": "BTCUSDT", "c": "64000.0", "E": 1000}}),
            "not json",
            json.dumps({"stream": "ethusdt@ticker", "data": {"s": "ETHUSDT", "c": "3100.0", "E": 1000}}),
        ]
        urls = []

        def connect(url, **kwargs):
            urls.append(url)
            return FakeSocket(frames)

        client = BinanceFeedClient(connect=connect)
        ticks = []

        async def on_tick(tick):
            ticks.append(tick)

        await client._connect_once(("BTCUSDT", "ETHUSDT"), on_tick)
        assert [t.symbol for t in ticks] == ["BTCUSDT", "ETHUSDT"]
        assert "btcusdt@ticker/ethusdt@ticker" in urls[0]

    async def test_stream_reconnects_after_close(self):
        """When the socket ends, the handle opens a new one."""
        calls = 0

        def connect(url, **kwargs):
            nonlocal calls
            calls += 1
            return FakeSocket([])

        client = BinanceFeedClient(connect=connect, reconnect_policy=RetryPolicy.fixed(0.01))
        handle = await client.open_stream(["BTCUSDT"], AsyncMock())
        await asyncio.sleep(0.1)
        await client.close()
        assert calls >= 2
        assert handle.closed

    async def test_empty_symbol_set_does_not_connect(self):
        """With nothing to stream no socket is opened."""
        connect = AsyncMock()
        client = BinanceFeedClient(connect=connect)
        await client.open_stream([], AsyncMock())
        await asyncio.sleep(0.02)
        await client.close()
        connect.assert_not_called()
