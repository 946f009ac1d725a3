"""Worker thread logic for handling individual client connections."""

import logging
import selectors
import socket
import threading
import time
from typing import Optional

from speedtest_backend.bootstrap.socket_factory import ACCEPT_POLL_SECONDS
from speedtest_backend.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
    set_listener,
)
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.ip_classification import join_host_port
from speedtest_backend.domain.response_builders import (
    bad_request_response,
    draining_response,
    header_too_large_response,
)
from speedtest_backend.lifecycle.state import ServerLifecycle
from speedtest_backend.pipeline.io import receive_request, send_response
from speedtest_backend.pipeline.validation import HeaderTooLarge, validate_request
from speedtest_backend.transport.context import WorkerContext
from speedtest_backend.transport.proxy_protocol import (
    ProxyProtocolError,
    read_proxy_header,
)

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.transport.worker"), {}
)


def _await_next_request(
    selector: selectors.BaseSelector, lifecycle: ServerLifecycle, idle_timeout: float
) -> bool:
    """Wait for the client to send data.

    Once the server starts draining, returns True only if bytes are already
    pending on the connection.
    """
    deadline = time.monotonic() + idle_timeout
    while not lifecycle.is_draining():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("Idle connection timed out")
        if selector.select(min(ACCEPT_POLL_SECONDS, remaining)):
            return True
    return bool(selector.select(0))


def _read_request(
    client_socket: socket.socket, buffer: bytes, remote_addr: str
) -> Optional[HttpRequest]:
    """Read one request; ``None`` means the connection must be closed."""
    try:
        request = receive_request(client_socket, buffer, remote_addr)
    except HeaderTooLarge:
        WORKER_LOGGER.warning(
            "Request header block exceeded limit",
            extra={"event": "header_too_large", "client": remote_addr},
        )
        send_response(client_socket, header_too_large_response())
        return None
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": remote_addr},
        )
        send_response(client_socket, bad_request_response(None))
        return None

    if request is None and WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Client disconnected",
            extra={"event": "client_disconnected", "client": remote_addr},
        )
    return request


def _bytes_sent(response: HttpResponse, head_only: bool, completed: bool) -> int:
    if head_only or not completed:
        return 0
    if response.body_iter is not None:
        return response.content_length or 0
    return len(response.body)


def _process_request(
    request: HttpRequest, context: WorkerContext, client_socket: socket.socket
) -> bool:
    """Route and answer one request; returns True when the connection must close."""
    started = time.monotonic()
    head_only = request.method == "HEAD"
    response = validate_request(request) or context.handler(request)

    if not request.body.consumed:
        response.close_connection = True

    completed = send_response(client_socket, response, head_only=head_only)
    WORKER_LOGGER.info(
        "Request complete",
        extra={
            "event": "request_complete",
            "client": request.remote_addr,
            "method": request.method,
            "route": request.path,
            "status_code": response.status_code,
            "bytes_in": request.body.bytes_read,
            "bytes_out": _bytes_sent(response, head_only, completed),
            "duration_ms": round((time.monotonic() - started) * 1000, 2),
        },
    )
    return response.close_connection or not completed


def _serve_requests(
    client_socket: socket.socket,
    remote_addr: str,
    buffer: bytes,
    context: WorkerContext,
) -> None:
    lifecycle = context.lifecycle
    with selectors.DefaultSelector() as selector:
        selector.register(client_socket, selectors.EVENT_READ)
        while True:
            set_correlation_id(generate_correlation_id())

            # idle connections close quietly once draining starts
            if not buffer and not _await_next_request(
                selector, lifecycle, context.config.socket_timeout
            ):
                break
            if lifecycle.is_draining():
                send_response(client_socket, draining_response())
                break

            request = _read_request(client_socket, buffer, remote_addr)
            if request is None:
                break

            if _process_request(request, context, client_socket):
                break
            buffer = request.body.leftover()
            clear_correlation_id()


def _cleanup_worker(
    lifecycle: ServerLifecycle,
    thread: threading.Thread,
    client_socket: socket.socket,
    client_addr_str: str,
) -> None:
    lifecycle.cleanup_worker(thread)
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()

    WORKER_LOGGER.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": client_addr_str},
    )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    current_thread = threading.current_thread()
    context.lifecycle.register_worker(current_thread)
    client_socket.settimeout(context.config.socket_timeout)
    set_listener(context.listener)
    remote_addr = join_host_port(client_address[0], client_address[1])

    try:
        buffer = b""
        if context.proxy_protocol:
            header, buffer = read_proxy_header(
                client_socket, context.config.proxy_header_timeout
            )
            if header is not None and header.source is not None:
                remote_addr = join_host_port(*header.source)
        _serve_requests(client_socket, remote_addr, buffer, context)
    except ProxyProtocolError as error:
        WORKER_LOGGER.warning(
            "Invalid PROXY protocol header",
            extra={
                "event": "proxy_header_invalid",
                "client": remote_addr,
                "error": str(error),
            },
        )
    except TimeoutError:
        WORKER_LOGGER.info(
            "Connection timed out",
            extra={"event": "connection_timeout", "client": remote_addr},
        )
    except (ConnectionError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": remote_addr,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": remote_addr,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context.lifecycle, current_thread, client_socket, remote_addr)
