"""Server configuration, settings file loading and CLI argument parsing.

Values are resolved with the precedence CLI flag > environment variable >
settings file > built-in default. The resulting ``ServerConfig`` is built once
in ``main()`` and handed to every component that needs it.
"""

import argparse
import os
import tomllib
from dataclasses import dataclass
from typing import Any, Callable, Optional

from speedtest_backend.domain.payload import MAX_CHUNKS

ENV_PREFIX = "SPEEDTEST_"

DEFAULT_BIND_ADDRESS = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8989
DEFAULT_PROXYPROTOCOL_PORT = 0
DEFAULT_ASSETS_PATH = "./assets"
DEFAULT_IPINFO_BASE_URL = "https://ipinfo.io"
DEFAULT_GEO_LOOKUP_TIMEOUT = 3.0
DEFAULT_DOWNLOAD_CHUNKS = 4
DEFAULT_DISTANCE_UNIT = "km"
DEFAULT_SOCKET_TIMEOUT = 60
DEFAULT_SHUTDOWN_GRACE_SECONDS = 30
DEFAULT_PROXY_HEADER_TIMEOUT = 5.0

HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


class ConfigError(Exception):
    """Raised when the settings file or a configured value cannot be used."""


@dataclass(frozen=True)
class ServerConfig:
    """Process-wide settings, immutable once the server starts."""

    bind_address: str = DEFAULT_BIND_ADDRESS
    listen_port: int = DEFAULT_LISTEN_PORT
    proxyprotocol_port: int = DEFAULT_PROXYPROTOCOL_PORT
    server_lat: float = 0.0
    server_lng: float = 0.0
    server_auto_locate: bool = True
    ipinfo_api_key: str = ""
    ipinfo_base_url: str = DEFAULT_IPINFO_BASE_URL
    geo_lookup_timeout: float = DEFAULT_GEO_LOOKUP_TIMEOUT
    assets_path: str = DEFAULT_ASSETS_PATH
    enable_cors: bool = True
    download_chunks: int = DEFAULT_DOWNLOAD_CHUNKS
    distance_unit: str = DEFAULT_DISTANCE_UNIT
    socket_timeout: int = DEFAULT_SOCKET_TIMEOUT
    shutdown_grace_seconds: int = DEFAULT_SHUTDOWN_GRACE_SECONDS
    proxy_header_timeout: float = DEFAULT_PROXY_HEADER_TIMEOUT


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _coerce(name: str, value: Any, cast: Callable[[Any], Any]) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def _setting(
    key: str, cast: Callable[[Any], Any], settings: dict[str, Any], default: Any
) -> Any:
    """Resolve one setting from the environment, then the settings file."""
    env_name = ENV_PREFIX + key.upper()
    value = os.getenv(env_name)
    if value is not None:
        return _coerce(env_name, value, cast)
    if key in settings:
        return _coerce(key, settings[key], cast)
    return default


def load_settings_file(path: Optional[str]) -> dict[str, Any]:
    """Read a TOML settings file, returning an empty mapping when no path is set."""
    if not path:
        return {}
    try:
        with open(path, "rb") as handle:
            return tomllib.load(handle)
    except OSError as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid settings file {path}: {exc}") from exc


def _build_parser(settings: dict[str, Any]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Speed test backend server")
    parser.add_argument(
        "-c",
        "--config",
        default=os.getenv(ENV_PREFIX + "CONFIG"),
        help="Path to a TOML settings file",
    )
    parser.add_argument(
        "--bind-address",
        default=_setting("bind_address", str, settings, DEFAULT_BIND_ADDRESS),
    )
    parser.add_argument(
        "--listen-port",
        type=int,
        default=_setting("listen_port", int, settings, DEFAULT_LISTEN_PORT),
    )
    parser.add_argument(
        "--proxyprotocol-port",
        type=int,
        default=_setting(
            "proxyprotocol_port", int, settings, DEFAULT_PROXYPROTOCOL_PORT
        ),
        help="Port for the PROXY protocol listener (0 disables it)",
    )
    parser.add_argument(
        "--server-lat",
        type=float,
        default=_setting("server_lat", float, settings, 0.0),
    )
    parser.add_argument(
        "--server-lng",
        type=float,
        default=_setting("server_lng", float, settings, 0.0),
    )
    parser.add_argument(
        "--server-auto-locate",
        action=argparse.BooleanOptionalAction,
        default=_setting("server_auto_locate", _to_bool, settings, True),
        help="Look up the server location when no coordinates are configured",
    )
    parser.add_argument(
        "--ipinfo-api-key",
        default=_setting("ipinfo_api_key", str, settings, ""),
    )
    parser.add_argument(
        "--ipinfo-base-url",
        default=_setting("ipinfo_base_url", str, settings, DEFAULT_IPINFO_BASE_URL),
    )
    parser.add_argument(
        "--geo-lookup-timeout",
        type=float,
        default=_setting(
            "geo_lookup_timeout", float, settings, DEFAULT_GEO_LOOKUP_TIMEOUT
        ),
        help="Timeout in seconds for geolocation lookups",
    )
    parser.add_argument(
        "--assets-path",
        default=_setting("assets_path", str, settings, DEFAULT_ASSETS_PATH),
    )
    parser.add_argument(
        "--enable-cors",
        action=argparse.BooleanOptionalAction,
        default=_setting("enable_cors", _to_bool, settings, True),
    )
    parser.add_argument(
        "--download-chunks",
        type=int,
        default=_setting("download_chunks", int, settings, DEFAULT_DOWNLOAD_CHUNKS),
        help="Chunks sent by /garbage when ckSize is absent or invalid",
    )
    parser.add_argument(
        "--distance-unit",
        default=_setting("distance_unit", str, settings, DEFAULT_DISTANCE_UNIT),
        help="Default distance unit for /getIP (km, mi or NM)",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=_setting("socket_timeout", int, settings, DEFAULT_SOCKET_TIMEOUT),
        help="Socket timeout in seconds for request processing",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        default=_setting(
            "shutdown_grace_seconds", int, settings, DEFAULT_SHUTDOWN_GRACE_SECONDS
        ),
        help="Grace period in seconds for graceful shutdown",
    )
    parser.add_argument(
        "--proxy-header-timeout",
        type=float,
        default=_setting(
            "proxy_header_timeout", float, settings, DEFAULT_PROXY_HEADER_TIMEOUT
        ),
        help="Seconds to wait for a PROXY protocol header",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv(ENV_PREFIX + "LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=os.getenv(ENV_PREFIX + "LOG_DESTINATION", "stdout"),
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv(ENV_PREFIX + "LOG_FORMAT", "json").lower(),
        choices=["json", "text"],
        type=str.lower,
    )
    return parser


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments, seeding defaults from env and settings file."""
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("-c", "--config", default=os.getenv(ENV_PREFIX + "CONFIG"))
    known, _ = pre_parser.parse_known_args(argv)
    settings = load_settings_file(known.config)
    return _build_parser(settings).parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Validate parsed arguments and freeze them into a ``ServerConfig``."""
    for name in ("listen_port", "proxyprotocol_port"):
        port = getattr(args, name)
        if not 0 <= port <= 65535:
            raise ConfigError(f"{name} out of range: {port}")
    if args.download_chunks < 0:
        raise ConfigError(
            f"download_chunks must not be negative: {args.download_chunks}"
        )
    return ServerConfig(
        bind_address=args.bind_address,
        listen_port=args.listen_port,
        proxyprotocol_port=args.proxyprotocol_port,
        server_lat=args.server_lat,
        server_lng=args.server_lng,
        server_auto_locate=args.server_auto_locate,
        ipinfo_api_key=args.ipinfo_api_key,
        ipinfo_base_url=args.ipinfo_base_url.rstrip("/"),
        geo_lookup_timeout=args.geo_lookup_timeout,
        assets_path=args.assets_path,
        enable_cors=args.enable_cors,
        download_chunks=min(args.download_chunks, MAX_CHUNKS),
        distance_unit=args.distance_unit,
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
        proxy_header_timeout=args.proxy_header_timeout,
    )
