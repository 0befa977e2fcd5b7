"""Trade handler registry and the console trade printer."""

import logging
from typing import Callable, Iterator, List

from .models import TradeRecord, display_symbol


logger = logging.getLogger(__name__)

TradeHandler = Callable[[TradeRecord], None]


class HandlerRegistry:
    """
    Ordered list of trade callbacks.

    Handlers are invoked in registration order. A handler that raises is
    logged and skipped; the remaining handlers still run for that trade.
    """

    def __init__(self):
        self._handlers: List[TradeHandler] = []

    def add(self, handler: TradeHandler) -> None:
        if not callable(handler):
            raise TypeError(f"Handler must be callable, got {type(handler).__name__}")
        self._handlers.append(handler)
        logger.debug(f"Registered trade handler {_handler_name(handler)}")

    def dispatch(self, trade: TradeRecord) -> int:
        """Invoke every handler for one trade. Returns the number of handler failures."""
        failures = 0
        for handler in self._handlers:
            try:
                handler(trade)
            except Exception as e:
                failures += 1
                logger.error(
                    f"Trade handler {_handler_name(handler)} failed for {trade.symbol}: {e}",
                    exc_info=True
                )
        return failures

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[TradeHandler]:
        return iter(list(self._handlers))


def create_trade_handler(market_type: str) -> TradeHandler:
    """Return a handler printing each trade as ``[HH:MM:SS] <market> <symbol>: $price, Volume: v``."""

    def handle_trade(trade: TradeRecord) -> None:
        trade_time = trade.timestamp.astimezone()
        print(
            f"[{trade_time.strftime('%H:%M:%S')}] {market_type} {display_symbol(trade.symbol)}: "
            f"${trade.price:.2f}, Volume: {trade.volume:.4f}"
        )

    handle_trade.__name__ = handle_trade.__qualname__ = f"{market_type}_trade_printer"
    return handle_trade


def _handler_name(handler: TradeHandler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None) or repr(handler)
