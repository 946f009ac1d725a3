"""Static asset serving for the browser front end."""

import logging
import mimetypes
from pathlib import Path
from typing import Iterator

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.response_builders import (
    forbidden_response,
    not_found_response,
    streaming_response,
)
from speedtest_backend.domain.sandbox import ForbiddenPath, resolve_asset_path

FILE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.handlers.file"), {}
)


def stream_file(filepath: Path, chunk_size: int = 65536) -> Iterator[bytes]:
    """Yield file contents in fixed-size chunks for streaming responses."""
    with open(filepath, "rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _content_type_for_path(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    return mime_type or "application/octet-stream"


def serve_asset(request: HttpRequest, assets_root: str) -> HttpResponse:
    """Serve the file under ``assets_root`` matching the request path."""
    try:
        resolved_path = resolve_asset_path(assets_root, request.path)
    except ForbiddenPath:
        FILE_LOGGER.warning(
            "Forbidden path access blocked",
            extra={"event": "forbidden_path", "path": request.path},
        )
        return forbidden_response(request)

    if not resolved_path.is_file():
        FILE_LOGGER.info(
            "File not found",
            extra={"event": "file_not_found", "path": request.path},
        )
        return not_found_response(request)

    size = resolved_path.stat().st_size
    if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        FILE_LOGGER.debug(
            "Serving static asset",
            extra={
                "event": "file_read_started",
                "path": resolved_path.as_posix(),
                "bytes_out": size,
            },
        )
    headers = {"Content-Type": _content_type_for_path(resolved_path)}
    return streaming_response(request, headers, stream_file(resolved_path), size)
