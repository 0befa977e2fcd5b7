"""Finnhub WebSocket client with resubscribing reconnect loop."""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config.settings import FinnhubConfig, ReconnectConfig
from ..credentials import mask_token
from ..errors import DecodeError, StreamClosedError, StreamConnectError, SubscribeError
from ..handlers import HandlerRegistry, TradeHandler
from .. import metrics
from ..market_hours import log_session_advisory
from ..models import decode_message, subscribe_message
from ..utils.logging import log_with_context
from ..utils.retry import ExponentialBackoff

logger = logging.getLogger(__name__)

# Errors that mean "this socket is gone"
TRANSPORT_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)

ConnectFactory = Callable[..., Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[None]]


class ConnectionState(Enum):
    """Lifecycle of one ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ConnectionManager:
    """
    Keeps one subscription alive over a Finnhub WebSocket.

    Owns exactly one socket at a time. When the read loop loses the socket it
    closes it, waits out an exponential backoff (1s doubling to 30s by
    default), opens a fresh socket and re-sends the full subscription set.
    It retries forever until ``close()`` is called.

    Decoded trades are passed synchronously to each registered handler on the
    read path, so a slow handler slows this stream's reads.
    """

    def __init__(
        self,
        name: str,
        config: FinnhubConfig,
        symbols: Iterable[str],
        credential: Optional[str] = None,
        reconnect_config: Optional[ReconnectConfig] = None,
        session_gate: Optional[Callable[[], bool]] = None,
        connect_factory: Optional[ConnectFactory] = None,
        sleep: Optional[SleepFunc] = None
    ):
        self.name = name
        self.config = config
        self._subscriptions: Tuple[str, ...] = tuple(symbols)
        self._credential = credential if credential is not None else config.api_key
        self._session_gate = session_gate
        self._connect_factory = connect_factory or websockets.connect
        self._sleep_func = sleep

        reconnect_config = reconnect_config or ReconnectConfig()
        self._backoff = ExponentialBackoff(
            initial=reconnect_config.initial_backoff_seconds,
            maximum=reconnect_config.max_backoff_seconds,
            multiplier=reconnect_config.backoff_multiplier
        )

        self._handlers = HandlerRegistry()
        self._websocket: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._closed = asyncio.Event()
        self._streaming = False

        self.stats = {
            'messages_received': 0,
            'trades_dispatched': 0,
            'decode_errors': 0,
            'handler_errors': 0,
            'connect_attempts': 0,
            'connection_count': 0,
            'reconnect_count': 0,
            'last_message_time': None,
        }

    @property
    def subscriptions(self) -> Tuple[str, ...]:
        return self._subscriptions

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def current_backoff(self) -> float:
        """Delay the next reconnect attempt will wait."""
        return self._backoff.current

    def add_handler(self, handler: TradeHandler) -> 'ConnectionManager':
        """Register a trade handler. Register before ``stream()`` starts."""
        if self._streaming:
            logger.warning(f"[{self.name}] Handler registered after streaming started")
        self._handlers.add(handler)
        return self

    # ============================================================
    # Connection Management
    # ============================================================

    async def connect(self, credential: Optional[str] = None) -> None:
        """
        Open a new socket. Fails fast; retrying is the caller's job.

        Raises:
            StreamClosedError: if the manager has been closed
            StreamConnectError: if the transport could not be opened
        """
        if self.closed:
            raise StreamClosedError(f"[{self.name}] Manager is closed")

        if credential is not None:
            self._credential = credential

        # Never hold two sockets
        await self._close_socket()

        self._state = ConnectionState.CONNECTING
        self.stats['connect_attempts'] += 1
        url = self._build_url(self._credential)
        logger.info(f"[{self.name}] Connecting to Finnhub websocket: {self._build_url(mask_token(self._credential))}")

        try:
            websocket = await self._connect_factory(
                url,
                ping_interval=self.config.ping_interval_seconds,
                ping_timeout=self.config.ping_timeout_seconds,
                open_timeout=self.config.open_timeout_seconds,
                close_timeout=self.config.close_timeout_seconds,
                max_size=2**20  # 1MB max message size
            )
        except TRANSPORT_ERRORS as e:
            self._state = ConnectionState.DISCONNECTED
            metrics.record_error(self.name, 'connect')
            raise StreamConnectError(f"[{self.name}] Error connecting to websocket: {e}") from e

        if self.closed:
            # close() ran while the handshake was in flight
            await self._safe_close(websocket)
            self._state = ConnectionState.CLOSED
            raise StreamClosedError(f"[{self.name}] Manager closed during connect")

        self._websocket = websocket
        self.stats['connection_count'] += 1
        metrics.CONNECTION_STATUS.labels(market=self.name).set(1)
        logger.info(f"[{self.name}] Successfully connected to Finnhub websocket")

    async def subscribe(self) -> None:
        """
        Send one subscribe message per symbol, in order.

        Stops at the first failure. Symbols sent before the failure stay
        subscribed on that socket and are listed on the raised error.

        Raises:
            SubscribeError: if a control message could not be sent
            StreamClosedError: if the manager was closed while subscribing
        """
        websocket = self._websocket
        if websocket is None:
            raise SubscribeError(
                self._subscriptions[0] if self._subscriptions else "",
                reason="not connected"
            )

        if self._session_gate is not None and not self._session_gate():
            log_session_advisory(self.name)

        logger.info(f"[{self.name}] Subscribing to symbols: {list(self._subscriptions)}")
        sent = []
        for symbol in self._subscriptions:
            try:
                await websocket.send(subscribe_message(symbol))
            except TRANSPORT_ERRORS as e:
                if self.closed:
                    raise StreamClosedError(f"[{self.name}] Manager closed during subscribe") from e
                metrics.record_error(self.name, 'subscribe')
                raise SubscribeError(symbol, subscribed=sent, reason=str(e)) from e
            if self.closed:
                raise StreamClosedError(f"[{self.name}] Manager closed during subscribe")
            sent.append(symbol)
            logger.debug(f"[{self.name}] Subscribed to {symbol}")

        self._state = ConnectionState.SUBSCRIBED

    async def stream(self) -> None:
        """
        Run the read loop until ``close()`` is called.

        Read failures trigger the reconnect protocol; decode failures and
        handler failures are logged and skipped.
        """
        self._streaming = True
        logger.info(f"[{self.name}] Starting to stream market data...")

        try:
            while not self.closed:
                if self._websocket is None:
                    self._state = ConnectionState.RECONNECTING
                    if not await self._reconnect():
                        break

                websocket = self._websocket
                if self.closed or websocket is None:
                    continue

                self._state = ConnectionState.STREAMING
                try:
                    raw_message = await asyncio.wait_for(
                        websocket.recv(),
                        timeout=self.config.read_timeout_seconds
                    )
                except asyncio.TimeoutError:
                    # Quiet stream; loop back to re-check the closed flag
                    continue
                except (ConnectionClosed, WebSocketException, OSError) as e:
                    if self.closed:
                        break
                    logger.warning(f"[{self.name}] Connection error: {e}. Attempting to reconnect...")
                    metrics.record_error(self.name, 'read')
                    await self._close_socket()
                    continue

                self._handle_message(raw_message)
        finally:
            self._streaming = False

        logger.info(f"[{self.name}] Stream stopped")

    async def close(self) -> None:
        """Close the socket and stop the read and reconnect loops. Idempotent."""
        if self.closed:
            return

        logger.info(f"[{self.name}] Closing stream")
        self._closed.set()
        self._state = ConnectionState.CLOSED
        await self._close_socket()

    # ============================================================
    # Internals
    # ============================================================

    async def _reconnect(self) -> bool:
        """Reconnect and resubscribe with backoff. Returns False only when closed."""
        attempt = 0
        while not self.closed:
            attempt += 1
            delay = self._backoff.current
            log_with_context(
                logger, logging.INFO,
                f"[{self.name}] Waiting {delay:g}s before reconnecting (attempt {attempt})",
                market=self.name, attempt=attempt, delay=delay
            )
            await self._sleep(delay)
            if self.closed:
                return False

            try:
                await self.connect()
            except StreamClosedError:
                return False
            except StreamConnectError as e:
                logger.warning(f"[{self.name}] Reconnection failed: {e}")
                self._state = ConnectionState.RECONNECTING
                self._increase_backoff()
                continue

            try:
                await self.subscribe()
            except StreamClosedError:
                return False
            except SubscribeError as e:
                logger.warning(f"[{self.name}] Error resubscribing to symbols: {e}")
                await self._close_socket()
                self._state = ConnectionState.RECONNECTING
                self._increase_backoff()
                continue

            self._backoff.reset()
            metrics.BACKOFF_SECONDS.labels(market=self.name).set(self._backoff.current)
            metrics.RECONNECTS.labels(market=self.name).inc()
            self.stats['reconnect_count'] += 1
            logger.info(f"[{self.name}] Reconnected after {attempt} attempt(s)")
            return True

        return False

    def _increase_backoff(self) -> None:
        delay = self._backoff.increase()
        metrics.BACKOFF_SECONDS.labels(market=self.name).set(delay)

    async def _sleep(self, delay: float) -> None:
        """Backoff sleep that ends early when the manager is closed."""
        if self._sleep_func is not None:
            await self._sleep_func(delay)
            return
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _handle_message(self, raw_message) -> None:
        """Decode one frame and hand its trades to the handlers."""
        now = time.time()
        self.stats['messages_received'] += 1
        self.stats['last_message_time'] = now
        metrics.MESSAGES_RECEIVED.labels(market=self.name).inc()
        metrics.LAST_MESSAGE_TIMESTAMP.labels(market=self.name).set(now)

        try:
            envelope = decode_message(raw_message)
        except DecodeError as e:
            self.stats['decode_errors'] += 1
            metrics.record_error(self.name, 'decode')
            logger.warning(f"[{self.name}] Error parsing message: {e}")
            logger.debug(f"[{self.name}] Raw message: {str(raw_message)[:200]}")
            return

        if not envelope.is_trade:
            return

        for trade in envelope.trades:
            failures = self._handlers.dispatch(trade)
            self.stats['handler_errors'] += failures
            self.stats['trades_dispatched'] += 1
            metrics.record_error(self.name, 'handler', failures)

        metrics.TRADES_DISPATCHED.labels(market=self.name).inc(len(envelope.trades))

    async def _close_socket(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await self._safe_close(websocket)
            metrics.CONNECTION_STATUS.labels(market=self.name).set(0)
        if not self.closed and self._state is not ConnectionState.RECONNECTING:
            self._state = ConnectionState.DISCONNECTED

    async def _safe_close(self, websocket) -> None:
        try:
            await websocket.close()
        except TRANSPORT_ERRORS as e:
            logger.debug(f"[{self.name}] Error closing websocket: {e}")

    def _build_url(self, credential: str) -> str:
        return f"{self.config.ws_url}?token={quote(credential or '', safe='*')}"

    # ============================================================
    # Stats & Health
    # ============================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get connection and processing statistics."""
        last_message_age = None
        if self.stats['last_message_time']:
            last_message_age = time.time() - self.stats['last_message_time']

        return {
            **self.stats,
            'name': self.name,
            'state': self._state.value,
            'symbols': list(self._subscriptions),
            'handlers': len(self._handlers),
            'current_backoff_seconds': self._backoff.current,
            'last_message_age_seconds': last_message_age,
            'is_connected': self._websocket is not None,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the WebSocket connection."""
        stats = self.get_stats()
        issues = []

        if self._state is ConnectionState.CLOSED:
            issues.append('Stream closed')
        elif not stats['is_connected']:
            issues.append('WebSocket not connected')

        if stats['messages_received'] > 0:
            error_rate = stats['decode_errors'] / stats['messages_received']
            if error_rate > 0.05:
                issues.append(f"High decode error rate: {error_rate:.2%}")

        if not issues:
            status = 'healthy'
        elif self._state in (ConnectionState.RECONNECTING, ConnectionState.CONNECTING):
            status = 'degraded'
        else:
            status = 'unhealthy'

        return {
            'status': status,
            'issues': issues,
            'stats': stats
        }
