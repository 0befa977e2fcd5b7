"""Exception types raised by the streamer service."""

from typing import List, Optional


class StreamError(Exception):
    """Base class for streaming errors."""


class StreamConnectError(StreamError):
    """Transport could not be opened (DNS, TLS, handshake, timeout)."""


class SubscribeError(StreamError):
    """A subscribe control message could not be sent."""

    def __init__(self, symbol: str, subscribed: Optional[List[str]] = None, reason: str = ""):
        self.symbol = symbol
        self.subscribed = list(subscribed or [])
        message = f"Error subscribing to symbol {symbol}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DecodeError(StreamError):
    """An inbound frame could not be decoded."""


class StreamClosedError(StreamError):
    """Operation attempted on a manager that has been closed."""


class StartupError(StreamError):
    """A market stream could not be brought up at startup."""


class CredentialError(Exception):
    """Credential could not be obtained."""


class UnsupportedAccountError(CredentialError):
    """No credential source exists for the requested account selector."""


class ConfigError(ValueError):
    """Invalid configuration."""
