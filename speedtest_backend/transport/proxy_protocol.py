"""PROXY protocol (version 1 and 2) header parsing for the proxied listener.

A header is used when present; connections that start with anything else are
passed through unchanged with the peer address of the socket.
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter

PROXY_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.transport.proxy_protocol"), {}
)

V1_PREFIX = b"PROXY "
V1_MAX_LENGTH = 107
V2_SIGNATURE = b"\r\n\r\n\x00\r\nQUIT\n"
V2_HEADER_LENGTH = 16
V2_VERSION = 0x2

COMMAND_LOCAL = "LOCAL"
COMMAND_PROXY = "PROXY"

_V2_COMMANDS = {0x0: COMMAND_LOCAL, 0x1: COMMAND_PROXY}
_FAMILY_INET = 0x1
_FAMILY_INET6 = 0x2
_INET_BLOCK_LENGTH = 12
_INET6_BLOCK_LENGTH = 36


class ProxyProtocolError(Exception):
    """Raised when a connection starts with a malformed PROXY header."""


class NeedMoreData(Exception):
    """Raised by the parser when the buffer ends before the header does."""


@dataclass(frozen=True)
class ProxyHeader:
    """Decoded header; ``source`` is ``None`` for LOCAL and UNKNOWN headers."""

    version: int
    command: str
    source: Optional[tuple[str, int]] = None
    destination: Optional[tuple[str, int]] = None


def _parse_port(raw: str) -> int:
    if not raw.isdigit() or (len(raw) > 1 and raw.startswith("0")):
        raise ProxyProtocolError(f"Invalid port {raw!r}")
    port = int(raw)
    if port > 65535:
        raise ProxyProtocolError(f"Port out of range: {port}")
    return port


def parse_v1(line: bytes) -> ProxyHeader:
    """Parse a text header line without its trailing CRLF."""
    try:
        text = line.decode("ascii")
    except UnicodeDecodeError as exc:
        raise ProxyProtocolError("Non-ASCII PROXY v1 header") from exc

    parts = text.split(" ")
    if len(parts) < 2 or parts[0] != "PROXY":
        raise ProxyProtocolError("Missing PROXY v1 preamble")
    protocol = parts[1]
    if protocol == "UNKNOWN":
        return ProxyHeader(1, COMMAND_PROXY)
    if protocol not in ("TCP4", "TCP6") or len(parts) != 6:
        raise ProxyProtocolError(f"Unsupported PROXY v1 header {text!r}")

    address_type = (
        ipaddress.IPv4Address if protocol == "TCP4" else ipaddress.IPv6Address
    )
    try:
        source_ip = address_type(parts[2])
        destination_ip = address_type(parts[3])
    except ValueError as exc:
        raise ProxyProtocolError("Invalid address in PROXY v1 header") from exc
    return ProxyHeader(
        1,
        COMMAND_PROXY,
        (str(source_ip), _parse_port(parts[4])),
        (str(destination_ip), _parse_port(parts[5])),
    )


def parse_v2(header: bytes) -> ProxyHeader:
    """Parse a complete binary header, signature included.

    TLV vectors after the address block are ignored.
    """
    version_command = header[12]
    if version_command >> 4 != V2_VERSION:
        raise ProxyProtocolError(f"Unsupported PROXY version {version_command >> 4}")
    command = _V2_COMMANDS.get(version_command & 0x0F)
    if command is None:
        raise ProxyProtocolError(f"Unknown PROXY v2 command {version_command & 0x0F}")
    if command == COMMAND_LOCAL:
        return ProxyHeader(2, command)

    family = header[13] >> 4
    block = header[V2_HEADER_LENGTH:]
    if family == _FAMILY_INET:
        if len(block) < _INET_BLOCK_LENGTH:
            raise ProxyProtocolError("Truncated IPv4 address block")
        source_ip = ipaddress.IPv4Address(block[0:4])
        destination_ip = ipaddress.IPv4Address(block[4:8])
        ports = block[8:12]
    elif family == _FAMILY_INET6:
        if len(block) < _INET6_BLOCK_LENGTH:
            raise ProxyProtocolError("Truncated IPv6 address block")
        source_ip = ipaddress.IPv6Address(block[0:16])
        destination_ip = ipaddress.IPv6Address(block[16:32])
        ports = block[32:36]
    else:
        # AF_UNSPEC and AF_UNIX carry no usable client address
        return ProxyHeader(2, command)

    return ProxyHeader(
        2,
        command,
        (str(source_ip), int.from_bytes(ports[0:2], "big")),
        (str(destination_ip), int.from_bytes(ports[2:4], "big")),
    )


def parse_proxy_header(buffer: bytes) -> tuple[Optional[ProxyHeader], int]:
    """Return the header found at the start of ``buffer`` and its length.

    ``(None, 0)`` means the connection does not start with a PROXY header.
    Raises ``NeedMoreData`` while the buffer could still be a partial header.
    """
    if V2_SIGNATURE.startswith(buffer[: len(V2_SIGNATURE)]):
        if len(buffer) < V2_HEADER_LENGTH:
            raise NeedMoreData
        total = V2_HEADER_LENGTH + int.from_bytes(buffer[14:16], "big")
        if len(buffer) < total:
            raise NeedMoreData
        return parse_v2(buffer[:total]), total

    if V1_PREFIX.startswith(buffer[: len(V1_PREFIX)]):
        end = buffer.find(b"\r\n", 0, V1_MAX_LENGTH)
        if end == -1:
            if len(buffer) >= V1_MAX_LENGTH:
                raise ProxyProtocolError("PROXY v1 header exceeds 107 bytes")
            raise NeedMoreData
        return parse_v1(buffer[:end]), end + 2

    return None, 0


def read_proxy_header(
    client_socket: socket.socket, timeout: float
) -> tuple[Optional[ProxyHeader], bytes]:
    """Read an optional PROXY header, returning it with any bytes read past it.

    Reading is bounded by ``timeout`` seconds; the socket's previous timeout is
    restored afterwards.
    """
    previous_timeout = client_socket.gettimeout()
    client_socket.settimeout(timeout)
    buffer = b""
    try:
        while True:
            try:
                header, consumed = parse_proxy_header(buffer)
            except NeedMoreData:
                chunk = client_socket.recv(4096)
                if not chunk:
                    if not buffer:
                        return None, b""
                    raise ProxyProtocolError(
                        "Connection closed inside PROXY header"
                    ) from None
                buffer += chunk
                continue

            if header is not None and PROXY_LOGGER.logger.isEnabledFor(logging.DEBUG):
                PROXY_LOGGER.debug(
                    "PROXY header accepted",
                    extra={
                        "event": "proxy_header_parsed",
                        "proxy_version": header.version,
                        "client": header.source,
                    },
                )
            return header, buffer[consumed:]
    finally:
        client_socket.settimeout(previous_timeout)
