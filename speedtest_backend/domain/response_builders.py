"""Pure HTTP response builders.

Every response carries ``SECURITY_HEADERS``. Unless a builder says otherwise
the connection is kept open exactly when the client did not ask to close it;
responses built without a parsed request always close.
"""

import gzip
import json
from typing import Any, Iterable, Optional

from speedtest_backend.bootstrap.config import SECURITY_HEADERS
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse, should_close

STATUS_LINES = {
    200: "HTTP/1.1 200 OK",
    204: "HTTP/1.1 204 No Content",
    400: "HTTP/1.1 400 Bad Request",
    403: "HTTP/1.1 403 Forbidden",
    404: "HTTP/1.1 404 Not Found",
    405: "HTTP/1.1 405 Method Not Allowed",
    431: "HTTP/1.1 431 Request Header Fields Too Large",
    500: "HTTP/1.1 500 Internal Server Error",
    503: "HTTP/1.1 503 Service Unavailable",
}


def build_response(
    status: int,
    request: Optional[HttpRequest],
    headers: Optional[dict[str, str]] = None,
    body: bytes = b"",
    close: Optional[bool] = None,
) -> HttpResponse:
    """Assemble a response; ``close`` overrides the client's preference."""
    if close is None:
        close = should_close(request.headers) if request is not None else True
    return HttpResponse(
        STATUS_LINES[status], {**(headers or {}), **SECURITY_HEADERS}, body, close
    )


def _gzip_quality(token: str) -> Optional[float]:
    """Return the q-value of a ``gzip`` Accept-Encoding token, else ``None``."""
    algorithm, _, params = token.partition(";")
    if algorithm.strip().lower() != "gzip":
        return None
    for param in params.split(";"):
        key, _, raw_value = param.strip().partition("=")
        if key.lower() == "q" and raw_value:
            try:
                return float(raw_value)
            except ValueError:
                return 0.0
    return 1.0


def accepts_gzip(headers: dict[str, str]) -> bool:
    """True when Accept-Encoding lists gzip with a non-zero quality."""
    for token in headers.get("accept-encoding", "").split(","):
        quality = _gzip_quality(token.strip())
        if quality is not None and quality > 0:
            return True
    return False


def json_response(payload: Any, request: HttpRequest) -> HttpResponse:
    """Compact JSON body, gzipped when the client accepts it."""
    body = json.dumps(payload, separators=(",", ":")).encode()
    headers = {"Content-Type": "application/json; charset=utf-8"}
    if accepts_gzip(request.headers):
        body = gzip.compress(body)
        headers.update({"Content-Encoding": "gzip", "Vary": "Accept-Encoding"})
    return build_response(200, request, headers, body)


def streaming_response(
    request: HttpRequest,
    headers: dict[str, str],
    body_iter: Iterable[bytes],
    content_length: int,
) -> HttpResponse:
    """A 200 whose body is written chunk by chunk with a known total length."""
    response = build_response(200, request, headers)
    response.body_iter = body_iter
    response.content_length = content_length
    return response


def not_found_response(request: HttpRequest) -> HttpResponse:
    return build_response(404, request)


def forbidden_response(request: Optional[HttpRequest]) -> HttpResponse:
    return build_response(403, request)


def bad_request_response(
    request: Optional[HttpRequest], close: Optional[bool] = None
) -> HttpResponse:
    return build_response(400, request, close=close)


def header_too_large_response() -> HttpResponse:
    return build_response(431, None)


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: Iterable[str]
) -> HttpResponse:
    """405 with an ``Allow`` header listing the supported methods."""
    allow = ", ".join(sorted(allowed_methods))
    return build_response(405, request, {"Allow": allow})


def internal_error_response() -> HttpResponse:
    return build_response(500, None)


def draining_response() -> HttpResponse:
    """503 telling the client the server is shutting down."""
    return build_response(503, None, {"Connection": "close"}, b"draining")
