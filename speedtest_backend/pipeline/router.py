"""Request routing logic."""

import functools
import logging
from typing import Iterable, Optional

from speedtest_backend.bootstrap.config import ServerConfig
from speedtest_backend.domain.client_locator import ClientLocator
from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.handlers.data_plane import handle_empty, handle_garbage
from speedtest_backend.handlers.file_handler import serve_asset
from speedtest_backend.handlers.ip_handler import handle_get_ip
from speedtest_backend.handlers.system_handlers import (
    handle_method_not_allowed,
    handle_not_found,
)
from speedtest_backend.pipeline.middleware import (
    Handler,
    chain,
    cors,
    get_head,
    heartbeat,
    no_cache,
    real_ip,
    recoverer,
)
from speedtest_backend.security.cors import CorsConfig

ROUTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.pipeline.router"), {}
)

ROUTE_PREFIXES = ("", "/backend")
ROUTE_SUFFIXES = ("", ".php")


class Router:
    """Exact-path route table with an optional catch-all.

    A route registered with ``methods=None`` accepts every method.
    """

    def __init__(self) -> None:
        self._routes: dict[str, tuple[Optional[frozenset[str]], Handler]] = {}
        self._fallback: Optional[tuple[frozenset[str], Handler]] = None

    def add(
        self, path: str, handler: Handler, methods: Optional[Iterable[str]] = None
    ) -> None:
        allowed = frozenset(methods) if methods is not None else None
        self._routes[path] = (allowed, handler)

    def add_with_aliases(
        self, path: str, handler: Handler, methods: Optional[Iterable[str]] = None
    ) -> None:
        """Register ``path`` under every legacy prefix and suffix combination."""
        for prefix in ROUTE_PREFIXES:
            for suffix in ROUTE_SUFFIXES:
                self.add(f"{prefix}{path}{suffix}", handler, methods)

    def set_fallback(self, handler: Handler, methods: Iterable[str]) -> None:
        self._fallback = (frozenset(methods), handler)

    def __call__(self, request: HttpRequest) -> HttpResponse:
        route = self._routes.get(request.path)
        if route is None:
            if self._fallback is None:
                return handle_not_found(request)
            route = self._fallback

        allowed, handler = route
        if allowed is not None and request.method not in allowed:
            return handle_method_not_allowed(request, allowed)

        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "Route matched", extra={"event": "route_matched", "route": request.path}
            )
        return handler(request)


def build_router(
    config: ServerConfig, payload: bytes, locator: ClientLocator
) -> Router:
    router = Router()
    router.add_with_aliases("/empty", handle_empty)
    router.add_with_aliases(
        "/garbage",
        functools.partial(
            handle_garbage, payload=payload, default_chunks=config.download_chunks
        ),
        methods={"GET"},
    )
    router.add_with_aliases(
        "/getIP", functools.partial(handle_get_ip, locator=locator), methods={"GET"}
    )
    router.set_fallback(
        functools.partial(serve_asset, assets_root=config.assets_path),
        methods={"GET"},
    )
    return router


def build_handler(
    config: ServerConfig, payload: bytes, locator: ClientLocator
) -> Handler:
    """Assemble the router behind the middleware chain."""
    cors_config = CorsConfig() if config.enable_cors else None
    return chain(
        [
            real_ip,
            get_head,
            heartbeat(),
            cors(cors_config),
            no_cache,
            recoverer,
        ],
        build_router(config, payload, locator),
    )
