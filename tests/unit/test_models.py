"""Tests for trade models and frame decoding."""

import dataclasses
import json
from datetime import datetime, timezone

import pytest

from market_stream.services.streamer.src.errors import DecodeError
from market_stream.services.streamer.src.models import (
    TradeEnvelope,
    TradeRecord,
    decode_message,
    display_symbol,
    format_crypto_symbol,
    subscribe_message,
)


@pytest.mark.unit
class TestDecodeMessage:
    """Test decoding of inbound frames."""

    def test_trade_frame(self, sample_trade_message):
        envelope = decode_message(sample_trade_message)

        assert envelope.is_trade
        assert envelope.trades == (
            TradeRecord(symbol='BINANCE:BTCUSDT', price=42000.5, volume=0.125, timestamp_ms=1704812400000),
            TradeRecord(symbol='BINANCE:ETHUSDT', price=2250.25, volume=1.5, timestamp_ms=1704812400500),
        )

    def test_bytes_frame(self, sample_trade_message):
        envelope = decode_message(sample_trade_message.encode())
        assert len(envelope.trades) == 2

    def test_control_frame_yields_no_trades(self, ping_message):
        envelope = decode_message(ping_message)

        assert envelope == TradeEnvelope(type='ping')
        assert not envelope.is_trade
        assert envelope.trades == ()

    def test_unknown_frame_with_data_is_ignored(self):
        envelope = decode_message(json.dumps({'type': 'news', 'data': [{'headline': 'x'}]}))
        assert envelope.trades == ()

    def test_trade_frame_without_data(self):
        assert decode_message('{"type": "trade"}').trades == ()

    def test_missing_volume_defaults_to_zero(self):
        envelope = decode_message(json.dumps({
            'type': 'trade',
            'data': [{'p': 1.5, 's': 'AAPL', 't': 1}]
        }))
        assert envelope.trades[0].volume == 0.0

    def test_numeric_strings_are_accepted(self):
        envelope = decode_message(json.dumps({
            'type': 'trade',
            'data': [{'p': '101.25', 's': 'AAPL', 't': '1704812400000', 'v': '3'}]
        }))
        trade = envelope.trades[0]
        assert trade.price == 101.25
        assert trade.timestamp_ms == 1704812400000
        assert trade.volume == 3.0

    @pytest.mark.parametrize('raw', [
        b'\x00\x01not json',
        'not json at all',
        '',
        '[1, 2, 3]',
        '"trade"',
        '{"type": 5}',
        '{"type": "trade", "data": {"p": 1}}',
        '{"type": "trade", "data": [{"s": "AAPL", "t": 1}]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": "abc", "t": 1}]}',
        '{"type": "trade", "data": [{"s": 7, "p": 1, "t": 1}]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": true, "t": 1}]}',
        '{"type": "trade", "data": ["AAPL"]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": 1, "t": Infinity}]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": 1, "t": 1e999}]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": NaN, "t": 1}]}',
        '{"type": "trade", "data": [{"s": "AAPL", "p": 1, "t": 1, "v": -Infinity}]}',
        '[' * 100000 + ']' * 100000,
    ])
    def test_malformed_frames_raise_decode_error(self, raw):
        with pytest.raises(DecodeError):
            decode_message(raw)


@pytest.mark.unit
class TestTradeRecord:
    """Test TradeRecord behaviour."""

    def test_is_immutable(self):
        trade = TradeRecord(symbol='AAPL', price=1.0, volume=2.0, timestamp_ms=0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            trade.price = 3.0

    def test_timestamp_is_utc_datetime(self):
        trade = TradeRecord(symbol='AAPL', price=1.0, volume=2.0, timestamp_ms=1704812400500)
        assert trade.timestamp == datetime(2024, 1, 9, 15, 0, 0, 500000, tzinfo=timezone.utc)


@pytest.mark.unit
class TestSymbols:
    """Test control messages and symbol helpers."""

    def test_subscribe_message_wire_format(self):
        assert subscribe_message('AAPL') == '{"type":"subscribe","symbol":"AAPL"}'
        assert json.loads(subscribe_message('BINANCE:BTCUSDT')) == {
            'type': 'subscribe', 'symbol': 'BINANCE:BTCUSDT'
        }

    def test_format_crypto_symbol(self):
        assert format_crypto_symbol('BTC', 'USDT') == 'BINANCE:BTCUSDT'
        assert format_crypto_symbol('eth', 'usdt', venue='COINBASE') == 'COINBASE:ETHUSDT'

    def test_display_symbol_strips_venue(self):
        assert display_symbol('BINANCE:BTCUSDT') == 'BTCUSDT'
        assert display_symbol('AAPL') == 'AAPL'
