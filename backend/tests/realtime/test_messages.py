"""Tests for inbound message parsing and the outbound envelope."""

import json
import math

import pytest

from tickerhub.errors import MalformedMessage
from tickerhub.realtime.messages import (
    GetMarketData,
    GetTicker,
    Ping,
    Pong,
    Subscribe,
    Unsubscribe,
    envelope,
    parse_message,
)


class TestParseMessage:
    """Client → server frames."""

    def test_subscribe(self):
        """Symbols are upper-cased, de-duplicated, channels default to ticker."""
        message = parse_message('{"type": "subscribe", "symbols": ["btcusdt", "BTCUSDT", "ethusdt"]}')
        assert message == Subscribe(("BTCUSDT", "ETHUSDT"), ("ticker",))

    def test_subscribe_single_symbol_string(self):
        """A bare string is accepted as a one-item list."""
        assert parse_message('{"type": "subscribe", "symbols": "solusdt"}') == Subscribe(("SOLUSDT",))

    def test_payload_wrapper(self):
        """Arguments nested under 'payload' are read too."""
        raw = '{"type": "subscribe", "payload": {"symbols": ["ADAUSDT"], "channels": ["Ticker"]}}'
        assert parse_message(raw) == Subscribe(("ADAUSDT",), ("ticker",))

    def test_unsubscribe_all(self):
        """'all' is a special symbol selector."""
        assert parse_message('{"type": "unsubscribe", "symbols": "all"}') == Unsubscribe("all")

    def test_unsubscribe_list(self):
        assert parse_message('{"type": "unsubscribe", "symbols": ["btcusdt"]}') == Unsubscribe(("BTCUSDT",))

    def test_ping_pong(self):
        assert parse_message('{"type": "ping"}') == Ping()
        assert parse_message(b'{"type": "pong"}') == Pong()

    def test_get_market_data(self):
        assert parse_message('{"type": "get_market_data", "symbols": ["btcusdt"]}') == GetMarketData(("BTCUSDT",))

    def test_get_ticker(self):
        assert parse_message('{"type": "get_ticker", "symbol": " ethusdt "}') == GetTicker("ETHUSDT")

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            "{}",
            '{"type": "launch_rockets"}',
            '{"type": "subscribe"}',
            '{"type": "subscribe", "symbols": [1, 2]}',
            '{"type": "subscribe", "symbols": ["BTCUSDT"], "channels": []}',
            '{"type": "get_ticker"}',
        ],
    )
    def test_malformed(self, raw):
        """Anything unusable raises MalformedMessage."""
        with pytest.raises(MalformedMessage):
            parse_message(raw)


class TestEnvelope:
    """Server → client frames."""

    def test_shape(self):
        """Frames carry type, data and an ISO-8601 UTC timestamp."""
        frame = json.loads(envelope("ticker", {"symbol": "BTCUSDT"}))
        assert frame["type"] == "ticker"
        assert frame["data"] == {"symbol": "BTCUSDT"}
        assert frame["timestamp"].endswith("Z")

    def test_no_data(self):
        """Frames without a payload omit 'data'."""
        assert "data" not in json.loads(envelope("heartbeat"))

    def test_non_finite_rejected(self):
        """NaN cannot be sent as JSON."""
        with pytest.raises(ValueError):
            envelope("ticker", {"lastPrice": math.nan})
