"""Integration tests for graceful shutdown behavior."""

import signal
import socket
import time

import pytest

from tests.utils.http import (
    read_http_response,
    send_signal_to_process,
    wait_for_health_status,
)

pytestmark = pytest.mark.integration


def _connection_refused(host: str, port: int, timeout: float = 5.0) -> bool:
    deadline = time.perf_counter() + timeout
    while time.perf_counter() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                pass
        except ConnectionRefusedError:
            return True
        except OSError:
            pass
        time.sleep(0.1)
    return False


def test_sigterm_exits_cleanly_and_stops_listening(server_process):
    host, port = server_process["host"], server_process["port"]
    process = server_process["process"]
    assert wait_for_health_status(host, port, 200, timeout=2.0)

    send_signal_to_process(process.pid, signal.SIGTERM)

    assert process.wait(timeout=10) == 0
    assert _connection_refused(host, port)


def test_idle_keep_alive_connection_closed_on_shutdown(server_process):
    host, port = server_process["host"], server_process["port"]
    process = server_process["process"]

    with socket.create_connection((host, port), timeout=5) as client:
        client.sendall(b"GET /health HTTP/1.1\r\nHost: x\r\n\r\n")
        assert read_http_response(client).status_code == 200

        send_signal_to_process(process.pid, signal.SIGINT)
        remaining = client.recv(4096)

    assert remaining == b""
    assert process.wait(timeout=10) == 0


def test_in_flight_download_completes_during_shutdown(server_process):
    host, port = server_process["host"], server_process["port"]
    process = server_process["process"]

    with socket.create_connection((host, port), timeout=10) as client:
        client.sendall(
            b"GET /garbage?ckSize=20 HTTP/1.1\r\nConnection: close\r\n\r\n"
        )
        first = client.recv(4096)
        send_signal_to_process(process.pid, signal.SIGTERM)
        received = len(first)
        while True:
            chunk = client.recv(65536)
            if not chunk:
                break
            received += len(chunk)

    header_length = first.index(b"\r\n\r\n") + 4
    assert received - header_length == 20 * 1024 * 1024
    assert process.wait(timeout=10) == 0
