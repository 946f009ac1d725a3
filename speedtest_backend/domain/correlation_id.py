"""Per-connection logging context kept in contextvars.

Each worker thread runs in its own context, so the correlation ID of the
request being served and the listener that accepted the connection never leak
between connections.
"""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_PREFIX = "speedtest."

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)
_listener: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "listener", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Use ``correlation_id`` for log records and the ``X-Request-ID`` header."""
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


def set_listener(name: Optional[str]) -> None:
    """Record which listener ("primary" or "proxyprotocol") owns the thread."""
    _listener.set(name)


def get_listener() -> Optional[str]:
    return _listener.get()


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds ``correlation_id``, ``listener`` and ``component`` to every record.

    An explicit ``listener`` passed in ``extra`` wins over the thread's own.
    The caller's ``extra`` mapping is copied, never mutated.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = get_correlation_id() or "-"
        listener = get_listener()
        if listener is not None:
            extra.setdefault("listener", listener)
        extra["component"] = self.logger.name.removeprefix(LOGGER_PREFIX)
        kwargs["extra"] = extra
        return msg, kwargs
