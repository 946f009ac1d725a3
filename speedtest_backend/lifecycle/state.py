"""Server lifecycle state shared by every listener and worker thread."""

import logging
import threading
import time
from typing import Optional

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.lifecycle"), {}
)


class ServerLifecycle:
    """Cancellation token for the listeners plus worker thread tracking.

    ``begin_draining`` is safe to call from a signal handler: it only sets
    events, and the accept loops notice it on their next poll.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        self._listeners: dict[str, threading.Thread] = {}

    def should_stop(self) -> bool:
        """Check if listeners should stop accepting new connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        return self._draining_event.is_set()

    def register_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.discard(thread)

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def register_listener(self, name: str, thread: threading.Thread) -> None:
        """Track a secondary listener thread so shutdown can wait for it."""
        with self._lock:
            self._listeners[name] = thread

    def begin_draining(self, reason: Optional[str] = None) -> None:
        """Stop accepting connections on every listener and start draining."""
        if self._draining_event.is_set():
            return
        self._draining_event.set()
        self._stop_event.set()
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "shutdown_started", "error": reason or "requested"},
        )

    def join_listeners(self, timeout: float) -> None:
        """Wait for secondary listener threads to close their sockets."""
        with self._lock:
            listeners = list(self._listeners.values())
        deadline = time.monotonic() + timeout
        for listener in listeners:
            listener.join(timeout=max(0.0, deadline - time.monotonic()))

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for in-flight worker threads to finish within ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
