"""Unit tests for PROXY protocol header parsing."""

import ipaddress
import struct

import pytest

from speedtest_backend.transport.proxy_protocol import (
    COMMAND_LOCAL,
    COMMAND_PROXY,
    V2_SIGNATURE,
    NeedMoreData,
    ProxyProtocolError,
    parse_proxy_header,
    parse_v1,
    read_proxy_header,
)
from tests.utils.http import FakeSocket

HTTP_REQUEST = b"GET /getIP HTTP/1.1\r\nHost: x\r\n\r\n"


def _v2_header(command: int, family: int, block: bytes) -> bytes:
    return (
        V2_SIGNATURE
        + bytes([0x20 | command, family])
        + struct.pack("!H", len(block))
        + block
    )


def _inet_block(source: str, destination: str, sport: int, dport: int) -> bytes:
    return (
        ipaddress.ip_address(source).packed
        + ipaddress.ip_address(destination).packed
        + struct.pack("!HH", sport, dport)
    )


def test_parse_v1_tcp4():
    header = parse_v1(b"PROXY TCP4 203.0.113.7 192.0.2.1 51234 8080")

    assert header.version == 1
    assert header.command == COMMAND_PROXY
    assert header.source == ("203.0.113.7", 51234)
    assert header.destination == ("192.0.2.1", 8080)


def test_parse_v1_tcp6_and_unknown():
    tcp6 = parse_v1(b"PROXY TCP6 2001:db8::1 2001:db8::2 1000 443")
    unknown = parse_v1(b"PROXY UNKNOWN")

    assert tcp6.source == ("2001:db8::1", 1000)
    assert unknown.source is None


@pytest.mark.parametrize(
    "line",
    [
        b"PROXY TCP4 203.0.113.7 192.0.2.1 51234",
        b"PROXY TCP4 2001:db8::1 192.0.2.1 1 2",
        b"PROXY TCP4 203.0.113.7 192.0.2.1 99999 80",
        b"PROXY TCP4 203.0.113.7 192.0.2.1 080 80",
        b"PROXY UDP4 203.0.113.7 192.0.2.1 1 2",
        b"PROXY",
    ],
)
def test_parse_v1_rejects_malformed(line):
    with pytest.raises(ProxyProtocolError):
        parse_v1(line)


def test_parse_proxy_header_v1_returns_consumed_length():
    line = b"PROXY TCP4 203.0.113.7 192.0.2.1 51234 8080\r\n"

    header, consumed = parse_proxy_header(line + HTTP_REQUEST)

    assert header.source == ("203.0.113.7", 51234)
    assert consumed == len(line)


def test_parse_proxy_header_v1_too_long():
    with pytest.raises(ProxyProtocolError):
        parse_proxy_header(b"PROXY TCP4 " + b"1" * 120)


def test_parse_proxy_header_v2_inet_skips_tlvs():
    tlv = b"\x04\x00\x03abc"
    header_bytes = _v2_header(
        0x1, 0x11, _inet_block("198.51.100.4", "192.0.2.1", 40000, 80) + tlv
    )

    header, consumed = parse_proxy_header(header_bytes + HTTP_REQUEST)

    assert header.version == 2
    assert header.source == ("198.51.100.4", 40000)
    assert header.destination == ("192.0.2.1", 80)
    assert consumed == len(header_bytes)


def test_parse_proxy_header_v2_inet6():
    header_bytes = _v2_header(
        0x1, 0x21, _inet_block("2001:db8::5", "2001:db8::1", 5555, 443)
    )

    header, _ = parse_proxy_header(header_bytes)

    assert header.source == ("2001:db8::5", 5555)


def test_parse_proxy_header_v2_local_has_no_source():
    header, consumed = parse_proxy_header(_v2_header(0x0, 0x00, b""))

    assert header.command == COMMAND_LOCAL
    assert header.source is None
    assert consumed == 16


@pytest.mark.parametrize(
    "header_bytes",
    [
        V2_SIGNATURE + b"\x11\x11\x00\x00",
        V2_SIGNATURE + b"\x2f\x11\x00\x00",
        V2_SIGNATURE + b"\x21\x11\x00\x04" + b"\x01\x02\x03\x04",
    ],
)
def test_parse_proxy_header_v2_rejects_malformed(header_bytes):
    with pytest.raises(ProxyProtocolError):
        parse_proxy_header(header_bytes)


@pytest.mark.parametrize(
    "partial", [b"", b"PRO", b"PROXY TCP4 1.2.3.4", V2_SIGNATURE[:5]]
)
def test_parse_proxy_header_needs_more_data(partial):
    with pytest.raises(NeedMoreData):
        parse_proxy_header(partial)


def test_parse_proxy_header_passes_plain_http_through():
    assert parse_proxy_header(HTTP_REQUEST) == (None, 0)


def test_read_proxy_header_returns_leftover_and_restores_timeout():
    client = FakeSocket(
        [b"PROXY TCP4 203.0.113.7 192.0.2.1 51234 80", b"80\r\n" + HTTP_REQUEST]
    )
    client.settimeout(60)

    header, leftover = read_proxy_header(client, 5.0)

    assert header.source == ("203.0.113.7", 51234)
    assert header.destination == ("192.0.2.1", 8080)
    assert leftover == HTTP_REQUEST
    assert client.gettimeout() == 60


def test_read_proxy_header_without_header_keeps_bytes():
    client = FakeSocket([HTTP_REQUEST])

    header, leftover = read_proxy_header(client, 5.0)

    assert header is None
    assert leftover == HTTP_REQUEST


def test_read_proxy_header_truncated_header_is_an_error():
    client = FakeSocket([b"PROXY TCP4 203.0.113.7"])

    with pytest.raises(ProxyProtocolError):
        read_proxy_header(client, 5.0)


def test_read_proxy_header_immediate_eof():
    assert read_proxy_header(FakeSocket(), 5.0) == (None, b"")
