"""Request validation utilities applied before the middleware chain."""

from typing import Optional

from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import (
    bad_request_response,
    forbidden_response,
)


class HeaderTooLarge(Exception):
    """Raised when a request header block exceeds the configured limit."""


def enforce_safe_path(request: HttpRequest) -> Optional[HttpResponse]:
    """Reject paths that are not absolute or that try to climb out of the root."""
    if not request.path.startswith("/") or "\x00" in request.path:
        return bad_request_response(request)
    if (
        "/../" in request.path
        or request.path.endswith("/..")
        or request.path.startswith("/..")
    ):
        return forbidden_response(request)
    return None


def validate_request(request: HttpRequest) -> Optional[HttpResponse]:
    """Return an error response when the request fails validation checks."""
    return enforce_safe_path(request)
