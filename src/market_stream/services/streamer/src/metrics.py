"""Prometheus metrics for the streamer service."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest


MESSAGES_RECEIVED = Counter(
    'market_stream_messages_received_total',
    'Frames read from the upstream socket',
    ['market']
)

TRADES_DISPATCHED = Counter(
    'market_stream_trades_dispatched_total',
    'Trade records handed to handlers',
    ['market']
)

ERRORS = Counter(
    'market_stream_errors_total',
    'Streaming errors by type',
    ['market', 'error_type']
)

RECONNECTS = Counter(
    'market_stream_reconnects_total',
    'Successful reconnect and resubscribe cycles',
    ['market']
)

CONNECTION_STATUS = Gauge(
    'market_stream_connection_status',
    'Socket status (1=connected, 0=disconnected)',
    ['market']
)

BACKOFF_SECONDS = Gauge(
    'market_stream_backoff_seconds',
    'Delay the next reconnect attempt will wait',
    ['market']
)

LAST_MESSAGE_TIMESTAMP = Gauge(
    'market_stream_last_message_timestamp_seconds',
    'Unix time of the last frame received',
    ['market']
)


def record_error(market: str, error_type: str, count: int = 1) -> None:
    if count:
        ERRORS.labels(market=market, error_type=error_type).inc(count)


def render_latest() -> tuple:
    """Return (body, content_type) for a scrape."""
    return generate_latest(), CONTENT_TYPE_LATEST
