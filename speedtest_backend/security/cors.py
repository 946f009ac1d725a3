"""CORS (Cross-Origin Resource Sharing) utilities for the speed test backend."""

from dataclasses import dataclass, field
from typing import Optional

from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import build_response

WILDCARD = "*"


@dataclass(frozen=True)
class CorsConfig:
    """CORS policy; the defaults allow any origin and any request header."""

    allowed_origins: list[str] = field(default_factory=lambda: [WILDCARD])
    allowed_methods: list[str] = field(
        default_factory=lambda: ["GET", "POST", "OPTIONS", "HEAD"]
    )
    allowed_headers: list[str] = field(default_factory=lambda: [WILDCARD])
    expose_headers: list[str] = field(default_factory=lambda: ["X-Request-ID"])
    max_age: int = 86400


def is_preflight_request(request: HttpRequest) -> bool:
    """Check if the request is a CORS preflight OPTIONS request."""
    return (
        request.method == "OPTIONS"
        and "origin" in request.headers
        and "access-control-request-method" in request.headers
    )


def determine_allowed_origin(origin: str, cors_config: CorsConfig) -> Optional[str]:
    if WILDCARD in cors_config.allowed_origins:
        return WILDCARD
    if origin in cors_config.allowed_origins:
        return origin
    return None


def _allowed_request_headers(requested: str, cors_config: CorsConfig) -> str:
    """Echo the requested headers when all of them are permitted."""
    if WILDCARD in cors_config.allowed_headers:
        return requested
    allowed = {h.lower() for h in cors_config.allowed_headers}
    wanted = {h.strip().lower() for h in requested.split(",") if h.strip()}
    if wanted.issubset(allowed):
        return requested
    return ", ".join(cors_config.allowed_headers)


def apply_cors_headers(
    headers: dict[str, str],
    request: HttpRequest,
    cors_config: Optional[CorsConfig],
) -> None:
    """Apply CORS headers to a response based on the request and configuration."""
    if cors_config is None:
        return

    origin = request.headers.get("origin")
    if not origin:
        return

    allowed_origin = determine_allowed_origin(origin, cors_config)
    if allowed_origin is None:
        return

    headers["Access-Control-Allow-Origin"] = allowed_origin
    if allowed_origin != WILDCARD:
        headers.setdefault("Vary", "Origin")
    if cors_config.expose_headers:
        headers["Access-Control-Expose-Headers"] = ", ".join(cors_config.expose_headers)


def preflight_response(request: HttpRequest, cors_config: CorsConfig) -> HttpResponse:
    """Create a 204 response for CORS preflight OPTIONS requests."""
    headers: dict[str, str] = {}
    origin = request.headers.get("origin", "")
    allowed_origin = determine_allowed_origin(origin, cors_config)
    requested_method = request.headers.get("access-control-request-method", "")

    if allowed_origin is not None and requested_method.upper() in {
        method.upper() for method in cors_config.allowed_methods
    }:
        headers["Access-Control-Allow-Origin"] = allowed_origin
        if allowed_origin != WILDCARD:
            headers["Vary"] = "Origin"
        headers["Access-Control-Allow-Methods"] = ", ".join(
            cors_config.allowed_methods
        )
        requested_headers = request.headers.get("access-control-request-headers", "")
        if requested_headers:
            headers["Access-Control-Allow-Headers"] = _allowed_request_headers(
                requested_headers, cors_config
            )
        headers["Access-Control-Max-Age"] = str(cors_config.max_age)

    return build_response(204, request, headers)
