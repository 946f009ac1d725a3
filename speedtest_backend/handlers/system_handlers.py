"""Fallback handlers used by the router for unmatched methods."""

import logging
from typing import Iterable

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import (
    method_not_allowed_response,
    not_found_response,
)

SYSTEM_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.handlers.system"), {}
)


def handle_method_not_allowed(
    request: HttpRequest, allowed_methods: Iterable[str]
) -> HttpResponse:
    """Reject a request whose path matched but whose method did not."""
    allowed = sorted(allowed_methods)
    SYSTEM_LOGGER.info(
        "Method not allowed",
        extra={
            "event": "method_not_allowed",
            "method": request.method,
            "route": request.path,
        },
    )
    return method_not_allowed_response(request, allowed)


def handle_not_found(request: HttpRequest) -> HttpResponse:
    SYSTEM_LOGGER.info(
        "No matching route found",
        extra={
            "event": "route_not_found",
            "route": request.path,
            "method": request.method,
        },
    )
    return not_found_response(request)
