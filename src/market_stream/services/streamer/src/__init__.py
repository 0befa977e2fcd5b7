"""Streamer service sources."""

from .clients.finnhub_ws import ConnectionManager, ConnectionState
from .coordinator import FailurePolicy, MultiMarketCoordinator
from .handlers import HandlerRegistry, create_trade_handler
from .market_hours import is_trading
from .models import TradeEnvelope, TradeRecord, decode_message, display_symbol, format_crypto_symbol

__all__ = [
    'ConnectionManager',
    'ConnectionState',
    'FailurePolicy',
    'MultiMarketCoordinator',
    'HandlerRegistry',
    'create_trade_handler',
    'is_trading',
    'TradeEnvelope',
    'TradeRecord',
    'decode_message',
    'display_symbol',
    'format_crypto_symbol',
]
