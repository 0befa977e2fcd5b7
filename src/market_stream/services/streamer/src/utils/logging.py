"""Logging setup for the streamer service.

Reconnect and backoff lines carry structured fields passed through
``log_with_context``. Both formatters render them: JSON nests them under
``context``, text appends them as ``key=value`` pairs.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from ..config.settings import LoggingConfig


CONTEXT_PREFIX = 'ctx_'

# Loggers that are chatty at INFO and only interesting when something breaks
_QUIET_LOGGERS = ('websockets', 'aiohttp.access')


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in record.__dict__.items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'service': getattr(record, 'service', None),
            'logger': record.name,
            'message': record.getMessage(),
        }

        context = _context_fields(record)
        if context:
            entry['context'] = context

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Console formatter: ``time [LEVEL] logger: message key=value ...``."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        line = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        context = _context_fields(record)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _build_handler(output: str) -> logging.Handler:
    target = output.lower()
    if target == 'stdout':
        return logging.StreamHandler(sys.stdout)
    if target == 'stderr':
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(output)


def setup_logging(config: LoggingConfig, service_name: str = "streamer") -> None:
    """
    Route all service logging through one handler on the root logger.

    Args:
        config: Logging configuration (level, ``json`` or ``text``, stdout/stderr/file path)
        service_name: Stamped on every record as ``service``
    """
    formatter = JSONFormatter() if config.format.lower() == 'json' else TextFormatter()

    handler = _build_handler(config.output)
    handler.setFormatter(formatter)

    def add_service(record: logging.LogRecord) -> bool:
        record.service = service_name
        return True

    handler.addFilter(add_service)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={config.level}, format={config.format}, output={config.output}"
    )


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log ``message`` with ``context`` attached as structured fields."""
    logger.log(level, message, extra={f"{CONTEXT_PREFIX}{key}": value for key, value in context.items()})
