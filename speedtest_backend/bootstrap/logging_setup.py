"""Logging setup: one ``speedtest`` logger, JSON or text lines, stdout or file.

Every record carries the request correlation ID, the listener that accepted
the connection and the component (logger name below ``speedtest.``). JSON
output only includes the extra keys listed in ``EXTRA_KEYS``; string values
that look like credentials are replaced before they are written.
"""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from speedtest_backend.domain.correlation_id import (
    LOGGER_PREFIX,
    CorrelationLoggerAdapter,
)

LOGGER_NAME = "speedtest"
TEXT_FORMAT = (
    "%(asctime)s %(levelname)s [%(correlation_id)s] [%(listener)s] "
    "%(component)s :: %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5
REDACTED = "[REDACTED]"

# requests logs every pooled connection at DEBUG through urllib3
NOISY_LIBRARY_LOGGERS = ("urllib3",)

SENSITIVE_PATTERNS = (
    re.compile(r"(?i)(authorization|token|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}\b"),
)

CONTEXT_DEFAULTS = {"correlation_id": "-", "listener": "-"}

EXTRA_KEYS = (
    # connection and access line
    "client",
    "listener",
    "method",
    "route",
    "path",
    "status_code",
    "bytes_in",
    "bytes_out",
    "duration_ms",
    "proxy_version",
    # download stream
    "chunks",
    "chunk_index",
    "ck_size",
    # geolocation
    "lookup_ip",
    "server_lat",
    "server_lng",
    # startup and shutdown
    "host",
    "port",
    "proxy_port",
    "assets_path",
    "log_destination",
    "log_level",
    "socket_timeout",
    "shutdown_grace_seconds",
    "signal",
    "remaining_workers",
    # failures
    "error_type",
    "error",
)


def redact_sensitive(value: str) -> str:
    """Return ``[REDACTED]`` for values that look like credentials or tokens."""
    if not value:
        return value
    if any(pattern.search(value) for pattern in SENSITIVE_PATTERNS):
        return REDACTED
    return value


class RequestContextFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Fill in request context for records logged outside the adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, default in CONTEXT_DEFAULTS.items():
            if not hasattr(record, name):
                setattr(record, name, default)
        if not hasattr(record, "component"):
            record.component = record.name.removeprefix(LOGGER_PREFIX)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line with sorted keys."""

    def _extra_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        fields = {}
        for key in EXTRA_KEYS:
            if not hasattr(record, key):
                continue
            value = getattr(record, key)
            fields[key] = redact_sensitive(value) if isinstance(value, str) else value
        return fields

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
            **self._extra_fields(record),
        }
        event = getattr(record, "event", None)
        if event is not None:
            log_data["event"] = event
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handler(
    destination: Optional[str], level: int, use_json: bool
) -> logging.Handler:
    """Create a stdout handler, or a rotating file handler for a path."""
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Install a single handler on the project logger and return an adapter.

    Safe to call more than once; earlier handlers are closed and replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    numeric_level = _resolve_level(level)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.addHandler(_build_handler(destination, numeric_level, use_json))

    for name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
    return CorrelationLoggerAdapter(logger, {})
