"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import json
import socket
import subprocess
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

SERVER_LAT = "52.5200"
SERVER_LNG = "13.4050"

GEO_RECORDS = {
    "8.8.8.8": {
        "ip": "8.8.8.8",
        "hostname": "dns.google",
        "city": "Mountain View",
        "region": "California",
        "country": "US",
        "loc": "37.4056,-122.0775",
        "org": "AS15169 Google LLC",
        "postal": "94043",
        "timezone": "America/Los_Angeles",
    },
}


class _GeoStubHandler(BaseHTTPRequestHandler):
    """Answers ``/<ip>/json`` from ``GEO_RECORDS`` like the real lookup service."""

    def do_GET(self) -> None:  # pylint: disable=invalid-name
        address = self.path.split("?", 1)[0].strip("/").removesuffix("/json")
        record = GEO_RECORDS.get(address)
        if record is None:
            self.send_error(404)
            return
        body = json.dumps(record).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):  # pylint: disable=redefined-builtin
        return


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    proxy_port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path


def _server_args(
    host: str,
    port: int,
    directory: Path,
    geo_url: str,
    log_file: Path,
    proxy_port: int = 0,
) -> list[str]:
    return [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--bind-address",
        host,
        "--listen-port",
        str(port),
        "--proxyprotocol-port",
        str(proxy_port),
        "--assets-path",
        str(directory),
        "--no-server-auto-locate",
        "--server-lat",
        SERVER_LAT,
        "--server-lng",
        SERVER_LNG,
        "--ipinfo-base-url",
        geo_url,
        "--log-destination",
        str(log_file),
    ]


def _launch_server(
    host: str,
    port: int,
    directory: Path,
    geo_url: str,
    extra_args: list[str] | None = None,
    proxy_port: int = 0,
) -> Generator[ServerProcessInfo, None, None]:
    log_file = directory.parent / f"{directory.name}.log"
    args = _server_args(host, port, directory, geo_url, log_file, proxy_port)
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
            if proxy_port:
                wait_for_port(host, proxy_port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "proxy_port": proxy_port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(scope="session", name="geo_stub_url")
def _geo_stub_url() -> Generator[str, None, None]:
    """Run a local stand-in for the geolocation service."""

    server = ThreadingHTTPServer(("127.0.0.1", 0), _GeoStubHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory", geo_stub_url: str
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the speed test server in a background process."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = tmp_path_factory.mktemp("assets")
    (directory / "index.html").write_text("<html>speedtest</html>")
    yield from _launch_server(
        host, port, directory, geo_stub_url, ["--shutdown-grace-seconds", "5"]
    )


@pytest.fixture(name="proxy_server_process")
def _proxy_server_process(
    tmp_path_factory: "TempPathFactory", geo_stub_url: str
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with the PROXY protocol listener enabled."""

    host = "127.0.0.1"
    port = reserve_port(host)
    proxy_port = reserve_port(host)
    directory = tmp_path_factory.mktemp("assets-proxy")
    yield from _launch_server(
        host, port, directory, geo_stub_url, proxy_port=proxy_port
    )


@pytest.fixture(name="no_cors_server_process")
def _no_cors_server_process(
    tmp_path_factory: "TempPathFactory", geo_stub_url: str
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with CORS headers disabled."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = tmp_path_factory.mktemp("assets-no-cors")
    yield from _launch_server(
        host, port, directory, geo_stub_url, ["--no-enable-cors"]
    )


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]


@pytest.fixture(name="occupied_proxy_port_server_process")
def _occupied_proxy_port_server_process(
    tmp_path_factory: "TempPathFactory", geo_stub_url: str
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with its PROXY protocol port already taken."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = tmp_path_factory.mktemp("assets-proxy-taken")
    with socket.create_server((host, 0)) as blocker:
        yield from _launch_server(
            host,
            port,
            directory,
            geo_stub_url,
            proxy_port=blocker.getsockname()[1],
        )


@pytest.fixture()
def server_args(
    tmp_path: Path, geo_stub_url: str
) -> Callable[[str, int], list[str]]:
    """Build the command line for a server process started by the test itself."""

    def build(host: str, port: int) -> list[str]:
        return _server_args(
            host, port, tmp_path, geo_stub_url, tmp_path / "server.log"
        )

    return build
