"""Middleware wrapping the router, applied outermost first."""

import dataclasses
import functools
import ipaddress
import logging
from typing import Callable, Iterable, Optional

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import (
    build_response,
    internal_error_response,
)
from speedtest_backend.security.cors import (
    CorsConfig,
    apply_cors_headers,
    is_preflight_request,
    preflight_response,
)

Handler = Callable[[HttpRequest], HttpResponse]
Middleware = Callable[[Handler], Handler]

MIDDLEWARE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.pipeline.middleware"), {}
)

HEALTH_PATH = "/health"
REAL_IP_HEADERS = ("true-client-ip", "x-real-ip")
NO_CACHE_HEADERS = {
    "Cache-Control": (
        "no-cache, no-store, no-transform, must-revalidate, private, max-age=0"
    ),
    "Pragma": "no-cache",
    "Expires": "Thu, 01 Jan 1970 00:00:00 GMT",
    "X-Accel-Expires": "0",
}


def _ip_literal(value: str) -> Optional[str]:
    candidate = value.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def forwarded_client_ip(headers: dict[str, str]) -> Optional[str]:
    """Return the client IP announced by a fronting proxy, if any.

    ``True-Client-IP`` wins over ``X-Real-IP``, which wins over the first
    ``X-Forwarded-For`` entry. Values that are not IP literals are ignored.
    """
    for name in REAL_IP_HEADERS:
        value = headers.get(name)
        if value:
            address = _ip_literal(value)
            if address is not None:
                return address
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return _ip_literal(forwarded_for.split(",", 1)[0])
    return None


def real_ip(handler: Handler) -> Handler:
    @functools.wraps(handler)
    def wrapper(request: HttpRequest) -> HttpResponse:
        address = forwarded_client_ip(request.headers)
        if address is not None:
            request.remote_addr = address
        return handler(request)

    return wrapper


def get_head(handler: Handler) -> Handler:
    """Route HEAD as GET; the transport omits the body when writing."""

    @functools.wraps(handler)
    def wrapper(request: HttpRequest) -> HttpResponse:
        if request.method == "HEAD":
            return handler(dataclasses.replace(request, method="GET"))
        return handler(request)

    return wrapper


def heartbeat(path: str = HEALTH_PATH) -> Middleware:
    """Answer ``path`` with a plain ``.`` for any method, before routing."""

    def middleware(handler: Handler) -> Handler:
        @functools.wraps(handler)
        def wrapper(request: HttpRequest) -> HttpResponse:
            if request.path != path:
                return handler(request)
            return build_response(200, request, {"Content-Type": "text/plain"}, b".")

        return wrapper

    return middleware


def cors(cors_config: Optional[CorsConfig]) -> Middleware:
    """Answer preflight requests and decorate responses with CORS headers."""

    def middleware(handler: Handler) -> Handler:
        if cors_config is None:
            return handler

        @functools.wraps(handler)
        def wrapper(request: HttpRequest) -> HttpResponse:
            if is_preflight_request(request):
                return preflight_response(request, cors_config)
            response = handler(request)
            apply_cors_headers(response.headers, request, cors_config)
            return response

        return wrapper

    return middleware


def no_cache(handler: Handler) -> Handler:
    @functools.wraps(handler)
    def wrapper(request: HttpRequest) -> HttpResponse:
        response = handler(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    return wrapper


def recoverer(handler: Handler) -> Handler:
    """Turn an exception escaping the handler into a 500 response."""

    @functools.wraps(handler)
    def wrapper(request: HttpRequest) -> HttpResponse:
        try:
            return handler(request)
        except Exception as error:  # pylint: disable=broad-except
            MIDDLEWARE_LOGGER.error(
                "Handler raised an exception",
                extra={
                    "event": "handler_panic",
                    "method": request.method,
                    "route": request.path,
                    "error_type": type(error).__name__,
                },
                exc_info=True,
            )
            return internal_error_response()

    return wrapper


def chain(middlewares: Iterable[Middleware], endpoint: Handler) -> Handler:
    """Wrap ``endpoint`` so the first middleware listed runs first."""
    handler = endpoint
    for middleware in reversed(list(middlewares)):
        handler = middleware(handler)
    return handler
