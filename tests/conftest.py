"""Pytest configuration and shared fixtures."""

import json
import logging
import signal
from typing import Any, Dict

import pytest

from market_stream.services.streamer.src.config.settings import (
    FinnhubConfig,
    ReconnectConfig,
    StreamerConfig,
    build_config,
)


@pytest.fixture
def finnhub_config() -> FinnhubConfig:
    """Finnhub config with a short read timeout for fast tests."""
    return FinnhubConfig(api_key="test-token", read_timeout_seconds=0.05)


@pytest.fixture
def reconnect_config() -> ReconnectConfig:
    return ReconnectConfig(initial_backoff_seconds=1.0, max_backoff_seconds=30.0, backoff_multiplier=2.0)


@pytest.fixture
def config_data() -> Dict[str, Any]:
    """Two-market configuration mapping."""
    return {
        'finnhub': {
            'api_key': 'test-token',
            'read_timeout_seconds': 0.05,
        },
        'markets': [
            {
                'name': 'crypto',
                'asset_class': 'crypto',
                'symbols': ['BINANCE:BTCUSDT', 'BINANCE:ETHUSDT'],
                'account': 'crypto-token',
            },
            {
                'name': 'stock',
                'asset_class': 'stock',
                'symbols': ['AAPL', 'MSFT'],
                'check_session': True,
                'account': 'stock-token',
            },
        ],
        'retry': {
            'max_attempts': 3,
            'initial_backoff_seconds': 0.5,
            'max_backoff_seconds': 2.0,
            'backoff_multiplier': 2.0,
            'jitter': False,
        },
        'logging': {'level': 'DEBUG'},
    }


@pytest.fixture
def streamer_config(config_data) -> StreamerConfig:
    return build_config(config_data)


@pytest.fixture
def sample_trade_message() -> str:
    """Finnhub trade frame carrying two prints."""
    return json.dumps({
        'type': 'trade',
        'data': [
            {'p': 42000.5, 's': 'BINANCE:BTCUSDT', 't': 1704812400000, 'v': 0.125},
            {'p': 2250.25, 's': 'BINANCE:ETHUSDT', 't': 1704812400500, 'v': 1.5},
        ]
    })


@pytest.fixture
def ping_message() -> str:
    return json.dumps({'type': 'ping'})


def trade_frame(*trades) -> str:
    """Build a trade frame from (symbol, price, timestamp_ms, volume) tuples."""
    return json.dumps({
        'type': 'trade',
        'data': [{'s': s, 'p': p, 't': t, 'v': v} for s, p, t, v in trades]
    })


@pytest.fixture
def make_trade_frame():
    return trade_frame


@pytest.fixture
def restore_process_state():
    """Undo signal handler and root logger changes made by the service."""
    handlers = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    root = logging.getLogger()
    root_handlers, root_level = list(root.handlers), root.level
    yield
    for sig, handler in handlers.items():
        signal.signal(sig, handler)
    for handler in root.handlers:
        if handler not in root_handlers:
            handler.close()
    root.handlers[:] = root_handlers
    root.setLevel(root_level)
