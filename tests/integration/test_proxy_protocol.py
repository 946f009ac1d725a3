"""Integration tests for the PROXY protocol listener."""

import ipaddress
import json
import socket
import struct

import pytest

from speedtest_backend.transport.proxy_protocol import V2_SIGNATURE
from tests.utils.http import read_http_response

pytestmark = pytest.mark.integration

GET_IP = b"GET /getIP HTTP/1.1\r\nHost: x\r\n\r\n"


def _exchange(host, port, data):
    with socket.create_connection((host, port), timeout=5) as client:
        client.sendall(data)
        return read_http_response(client)


def test_v1_header_sets_client_address(proxy_server_process):
    host, port = proxy_server_process["host"], proxy_server_process["proxy_port"]

    response = _exchange(
        host, port, b"PROXY TCP4 198.51.100.20 192.0.2.1 40000 80\r\n" + GET_IP
    )

    assert json.loads(response.body)["processedString"] == "198.51.100.20"


def test_v2_header_sets_client_address(proxy_server_process):
    host, port = proxy_server_process["host"], proxy_server_process["proxy_port"]
    block = (
        ipaddress.ip_address("10.1.2.3").packed
        + ipaddress.ip_address("192.0.2.1").packed
        + struct.pack("!HH", 40000, 80)
    )
    header = V2_SIGNATURE + b"\x21\x11" + struct.pack("!H", len(block)) + block

    response = _exchange(host, port, header + GET_IP)

    assert json.loads(response.body)["processedString"] == (
        "10.1.2.3 - private IPv4 access"
    )


def test_plain_http_on_proxy_port(proxy_server_process):
    host, port = proxy_server_process["host"], proxy_server_process["proxy_port"]

    response = _exchange(host, port, GET_IP)

    assert json.loads(response.body)["processedString"] == (
        "127.0.0.1 - localhost IPv4 access"
    )


def test_primary_port_ignores_proxy_headers(proxy_server_process):
    host, port = proxy_server_process["host"], proxy_server_process["port"]

    response = _exchange(
        host, port, b"PROXY TCP4 198.51.100.20 192.0.2.1 40000 80\r\n" + GET_IP
    )

    assert response.status_code == 400
