"""HTTP Input/Output operations."""

import functools
import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from speedtest_backend.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from speedtest_backend.domain.correlation_id import (
    CorrelationLoggerAdapter,
    get_correlation_id,
    set_correlation_id,
)
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.request_body import RequestBody
from speedtest_backend.pipeline.validation import HeaderTooLarge

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("speedtest.pipeline.io"), {})

CONTINUE_RESPONSE = b"HTTP/1.1 100 Continue\r\n\r\n"


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator or not name or name != name.strip():
            continue
        parsed[name.lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, dict[str, str]]:
    """Parse the method, decoded path and query parameters from the request line.

    Only the first value of a repeated query parameter is kept.
    """
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/"):
        raise ValueError("Invalid HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    query: dict[str, str] = {}
    for name, value in urllib.parse.parse_qsl(
        parsed_target.query, keep_blank_values=True
    ):
        query.setdefault(name, value)
    return method.upper(), path, query


def determine_body_framing(headers: dict[str, str]) -> Tuple[int, bool]:
    """Return ``(content_length, chunked)`` for the request body."""
    transfer_encoding = headers.get("transfer-encoding", "").lower()
    if transfer_encoding:
        if transfer_encoding.split(",")[-1].strip() != "chunked":
            raise ValueError("Unsupported Transfer-Encoding")
        return 0, True

    header_value = headers.get("content-length")
    if header_value is None:
        return 0, False
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    return content_length, False


def _expects_continue(headers: dict[str, str]) -> bool:
    return headers.get("expect", "").lower() == "100-continue"


def receive_request(
    client_socket: socket.socket, buffer: bytes, remote_addr: str
) -> Optional[HttpRequest]:
    """Read the header block and return a request whose body streams lazily.

    Returns ``None`` when the client closes before a full header block. Bytes
    following the body are available from ``request.body.leftover()``.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise HeaderTooLarge
        chunk = client_socket.recv(4096)
        if not chunk:
            return None
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    if len(header_block) > MAX_HEADER_BYTES:
        raise HeaderTooLarge
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)

    content_length, chunked = determine_body_framing(headers)
    before_first_recv = None
    if _expects_continue(headers) and not remainder:
        before_first_recv = functools.partial(client_socket.sendall, CONTINUE_RESPONSE)
    body = RequestBody(
        client_socket.recv,
        remainder,
        content_length=content_length,
        chunked=chunked,
        before_first_recv=before_first_recv,
    )
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    return HttpRequest(method, path, headers, body, query, remote_addr)


def _serialize_head(response: HttpResponse) -> bytes:
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    if response.body_iter is not None:
        headers["Content-Length"] = str(response.content_length or 0)
    else:
        headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    return "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER


def send_response(
    client_socket: socket.socket, response: HttpResponse, head_only: bool = False
) -> bool:
    """Serialize and send the response; returns False if a body write failed.

    Errors while sending the status line and headers propagate. Once a
    streamed body has started, a failed write is logged and the rest of the
    body is abandoned.
    """
    header_block = _serialize_head(response)
    if head_only:
        client_socket.sendall(header_block)
        return True
    if response.body_iter is None:
        client_socket.sendall(header_block + response.body)
        return True

    client_socket.sendall(header_block)
    bytes_out = 0
    for chunk_index, chunk in enumerate(response.body_iter):
        try:
            client_socket.sendall(chunk)
        except OSError as error:
            IO_LOGGER.error(
                "Error writing response body to client",
                extra={
                    "event": "body_write_failed",
                    "chunk_index": chunk_index,
                    "bytes_out": bytes_out,
                    "error_type": type(error).__name__,
                },
            )
            return False
        bytes_out += len(chunk)
    IO_LOGGER.debug(
        "Sent streamed response",
        extra={"status_code": response.status_code, "bytes_out": bytes_out},
    )
    return True
