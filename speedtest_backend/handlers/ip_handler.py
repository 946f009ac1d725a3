"""Client IP reporting endpoint."""

import logging

from speedtest_backend.domain.client_locator import ClientLocator
from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import json_response

IP_LOGGER = CorrelationLoggerAdapter(logging.getLogger("speedtest.handlers.ip"), {})


def handle_get_ip(request: HttpRequest, locator: ClientLocator) -> HttpResponse:
    """Report the caller's address, optionally with ISP and distance details."""
    include_isp = request.query.get("isp") == "true"
    envelope = locator.locate(
        request.remote_addr,
        include_isp=include_isp,
        distance_unit=request.query.get("distance"),
    )
    if IP_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IP_LOGGER.debug(
            "Client address reported",
            extra={"event": "ip_reported", "lookup_ip": envelope.processed_string},
        )
    return json_response(envelope.to_wire(), request)
