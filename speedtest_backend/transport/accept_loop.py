"""Connection acceptance loop shared by both listeners."""

import logging
import socket
import threading

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.ip_classification import join_host_port
from speedtest_backend.domain.response_builders import draining_response
from speedtest_backend.pipeline.io import send_response
from speedtest_backend.transport.context import WorkerContext
from speedtest_backend.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.transport.accept"), {}
)


def _reject_draining(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response())
    except OSError as error:
        ACCEPT_LOGGER.debug(
            "Could not send draining response",
            extra={
                "event": "draining_reject_failed",
                "error_type": type(error).__name__,
            },
        )
    finally:
        client_socket.close()


def _start_worker(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": join_host_port(client_address[0], client_address[1]),
                "listener": context.listener,
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=True,
    )
    thread.start()


def serve_listener(server_socket: socket.socket, context: WorkerContext) -> None:
    """Accept connections until the lifecycle stops, then close the socket.

    The socket must have a timeout set so the stop flag is polled.
    """
    lifecycle = context.lifecycle
    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.should_stop():
                    break
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={
                        "event": "accept_error",
                        "listener": context.listener,
                        "error_type": type(error).__name__,
                    },
                )
                continue

            if lifecycle.is_draining():
                _reject_draining(client_socket)
                continue

            _start_worker(client_socket, client_address, context)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Listener closed",
            extra={"event": "listener_closed", "listener": context.listener},
        )
