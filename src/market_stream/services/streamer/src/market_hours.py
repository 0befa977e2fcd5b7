"""US equity regular-session check."""

import logging
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


logger = logging.getLogger(__name__)

EXCHANGE_TIMEZONE = ZoneInfo("America/New_York")
SESSION_OPEN = time(9, 30)
SESSION_CLOSE = time(16, 0)


def is_trading(now: Optional[datetime] = None) -> bool:
    """
    Return True if the regular equity session is open at ``now``.

    Naive datetimes are treated as UTC. The session is 09:30 (inclusive)
    to 16:00 (exclusive) exchange time, Monday to Friday.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local = now.astimezone(EXCHANGE_TIMEZONE)

    # Saturday=5, Sunday=6
    if local.weekday() >= 5:
        return False

    return SESSION_OPEN <= local.time() < SESSION_CLOSE


def log_session_advisory(market: str) -> None:
    """Warn that subscribing now may yield no data."""
    logger.warning(f"[{market}] Stock market is currently closed. Regular trading hours are:")
    logger.warning(f"[{market}] Monday-Friday, 9:30 AM - 4:00 PM Eastern Time")
    logger.warning(f"[{market}] You may still connect to the stream but might not receive any data")
