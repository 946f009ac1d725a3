"""Speed test backend: download, upload and client IP endpoints."""

import signal
import sys
from typing import NoReturn

from speedtest_backend.bootstrap.config import ConfigError, build_config, parse_cli_args
from speedtest_backend.bootstrap.logging_setup import configure_logging
from speedtest_backend.clients.ipinfo import IpInfoClient, resolve_server_location
from speedtest_backend.domain.client_locator import ClientLocator
from speedtest_backend.domain.distance import resolve_unit
from speedtest_backend.domain.payload import generate_payload
from speedtest_backend.lifecycle.state import ServerLifecycle
from speedtest_backend.pipeline.router import build_handler
from speedtest_backend.transport.supervisor import run_server


def _exit_invalid_config(logger, error: ConfigError) -> NoReturn:
    logger.critical(
        "Invalid configuration",
        extra={"event": "config_invalid", "error": str(error)},
    )
    sys.exit(1)


def main() -> None:
    """Build the configuration and collaborators, then serve until signalled."""
    try:
        args = parse_cli_args(sys.argv[1:])
    except ConfigError as error:
        logger = configure_logging()
        _exit_invalid_config(logger, error)

    logger = configure_logging(
        args.log_level, args.log_destination, use_json=args.log_format == "json"
    )
    try:
        config = build_config(args)
    except ConfigError as error:
        _exit_invalid_config(logger, error)

    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        logger.info(
            "Received shutdown signal",
            extra={"event": "shutdown_signal", "signal": signum},
        )
        lifecycle.begin_draining(signal.Signals(signum).name)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    logger.info(
        "Starting speed test backend",
        extra={
            "event": "server_starting",
            "host": config.bind_address,
            "port": config.listen_port,
            "proxy_port": config.proxyprotocol_port,
            "assets_path": config.assets_path,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )

    payload = generate_payload()
    geo_client = IpInfoClient(
        config.ipinfo_base_url, config.ipinfo_api_key, config.geo_lookup_timeout
    )
    locator = ClientLocator(
        resolve_server_location(config, geo_client),
        geo_client.lookup,
        resolve_unit(config.distance_unit),
    )
    run_server(config, lifecycle, build_handler(config, payload, locator))


if __name__ == "__main__":
    main()
