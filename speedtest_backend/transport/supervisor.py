"""Starts the listeners and coordinates their shutdown."""

import logging
import sys
import threading

from speedtest_backend.bootstrap.config import ServerConfig
from speedtest_backend.bootstrap.socket_factory import create_server_socket
from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.lifecycle.state import ServerLifecycle
from speedtest_backend.pipeline.middleware import Handler
from speedtest_backend.transport.accept_loop import serve_listener
from speedtest_backend.transport.context import (
    PRIMARY_LISTENER,
    PROXY_LISTENER,
    WorkerContext,
)

SUPERVISOR_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.transport.supervisor"), {}
)


def _run_proxy_listener(context: WorkerContext) -> None:
    """Serve the PROXY protocol port; a bind failure only ends this listener."""
    config = context.config
    try:
        server_socket = create_server_socket(
            config.bind_address, config.proxyprotocol_port
        )
    except OSError as error:
        SUPERVISOR_LOGGER.error(
            "PROXY protocol listener failed to start",
            extra={
                "event": "proxy_listener_failed",
                "host": config.bind_address,
                "proxy_port": config.proxyprotocol_port,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        return

    SUPERVISOR_LOGGER.info(
        "PROXY protocol listener accepting connections",
        extra={
            "event": "server_listening",
            "listener": PROXY_LISTENER,
            "host": config.bind_address,
            "proxy_port": config.proxyprotocol_port,
        },
    )
    serve_listener(server_socket, context)


def start_proxy_listener(
    config: ServerConfig, lifecycle: ServerLifecycle, handler: Handler
) -> threading.Thread:
    context = WorkerContext(
        handler=handler,
        lifecycle=lifecycle,
        config=config,
        listener=PROXY_LISTENER,
        proxy_protocol=True,
    )
    thread = threading.Thread(
        target=_run_proxy_listener,
        args=(context,),
        name="proxyprotocol-listener",
        daemon=True,
    )
    lifecycle.register_listener(PROXY_LISTENER, thread)
    thread.start()
    return thread


def run_server(
    config: ServerConfig, lifecycle: ServerLifecycle, handler: Handler
) -> None:
    """Serve until the lifecycle stops, then drain in-flight connections.

    Exits the process with status 1 when the primary port cannot be bound.
    """
    try:
        server_socket = create_server_socket(config.bind_address, config.listen_port)
    except OSError as error:
        SUPERVISOR_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": config.bind_address,
                "port": config.listen_port,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        sys.exit(1)

    SUPERVISOR_LOGGER.info(
        "Server listening for connections",
        extra={
            "event": "server_listening",
            "listener": PRIMARY_LISTENER,
            "host": config.bind_address,
            "port": server_socket.getsockname()[1],
        },
    )

    if config.proxyprotocol_port != 0:
        start_proxy_listener(config, lifecycle, handler)

    context = WorkerContext(handler=handler, lifecycle=lifecycle, config=config)
    try:
        serve_listener(server_socket, context)
    finally:
        lifecycle.begin_draining("primary listener stopped")
        lifecycle.join_listeners(config.shutdown_grace_seconds)
        SUPERVISOR_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_workers(config.shutdown_grace_seconds)
        SUPERVISOR_LOGGER.info(
            "Server shutdown complete", extra={"event": "server_stopped"}
        )
