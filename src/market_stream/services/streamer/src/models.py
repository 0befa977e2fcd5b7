"""Trade data model and wire decoding for the Finnhub trade stream."""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple, Union

from .errors import DecodeError


TRADE_MESSAGE_TYPE = "trade"
DEFAULT_CRYPTO_VENUE = "BINANCE"


@dataclass(frozen=True)
class TradeRecord:
    """A single trade print for one instrument."""
    symbol: str
    price: float
    volume: float
    timestamp_ms: int

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "TradeRecord":
        """Build a record from a wire entry ``{"p", "s", "t", "v"}``."""
        if not isinstance(data, dict):
            raise DecodeError(f"Trade entry is not an object: {data!r}")

        missing = [key for key in ("s", "p", "t") if key not in data]
        if missing:
            raise DecodeError(f"Trade entry missing fields {missing}: {data!r}")

        symbol = data["s"]
        if not isinstance(symbol, str):
            raise DecodeError(f"Trade symbol is not a string: {symbol!r}")

        try:
            return cls(
                symbol=symbol,
                price=_as_float(data["p"]),
                volume=_as_float(data.get("v", 0.0)),
                timestamp_ms=_as_int(data["t"]),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise DecodeError(f"Invalid trade entry {data!r}: {e}") from e

    def __str__(self):
        return f"{self.symbol}: {self.volume} @ ${self.price:.2f}"


@dataclass(frozen=True)
class TradeEnvelope:
    """One decoded frame from the wire."""
    type: str
    trades: Tuple[TradeRecord, ...] = ()

    @property
    def is_trade(self) -> bool:
        return self.type == TRADE_MESSAGE_TYPE


def decode_message(raw_message: Union[str, bytes, bytearray]) -> TradeEnvelope:
    """
    Decode a raw frame into a TradeEnvelope.

    Frames of any type other than ``trade`` decode to an envelope with no
    trades so unknown control frames (ping etc.) pass through harmlessly.

    Raises:
        DecodeError: if the frame is not a JSON object or a trade entry is invalid
    """
    try:
        payload = json.loads(raw_message)
    except (TypeError, ValueError, RecursionError) as e:
        raise DecodeError(f"Invalid JSON frame: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError(f"Frame is not a JSON object: {type(payload).__name__}")

    message_type = payload.get("type", "")
    if not isinstance(message_type, str):
        raise DecodeError(f"Frame type is not a string: {message_type!r}")

    if message_type != TRADE_MESSAGE_TYPE:
        return TradeEnvelope(type=message_type)

    entries = payload.get("data") or []
    if not isinstance(entries, list):
        raise DecodeError("Trade frame 'data' is not a list")

    return TradeEnvelope(
        type=message_type,
        trades=tuple(TradeRecord.from_wire(entry) for entry in entries),
    )


def subscribe_message(symbol: str) -> str:
    """Control message subscribing to one instrument."""
    return json.dumps({"type": "subscribe", "symbol": symbol}, separators=(",", ":"))


def format_crypto_symbol(base: str, quote: str, venue: str = DEFAULT_CRYPTO_VENUE) -> str:
    """Format a crypto pair as an exchange-qualified identifier, e.g. BINANCE:BTCUSDT."""
    return f"{venue}:{base.upper()}{quote.upper()}"


def display_symbol(symbol: str) -> str:
    """Strip the venue prefix from an identifier."""
    return symbol.split(":", 1)[-1]


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError(f"boolean is not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number: {value!r}")
    return number


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError(f"boolean is not a number: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"non-finite number: {value!r}")
    return int(value)
