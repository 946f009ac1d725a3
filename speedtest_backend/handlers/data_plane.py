"""Upload and download test endpoints."""

import logging

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.domain.payload import parse_chunk_count, repeat_payload
from speedtest_backend.domain.response_builders import (
    bad_request_response,
    build_response,
    streaming_response,
)

DATA_PLANE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.handlers.data_plane"), {}
)

CHUNK_SIZE_PARAM = "ckSize"
GARBAGE_HEADERS = {
    "Content-Description": "File Transfer",
    "Content-Type": "application/octet-stream",
    "Content-Disposition": "attachment; filename=random.dat",
    "Content-Transfer-Encoding": "binary",
}


def handle_empty(request: HttpRequest) -> HttpResponse:
    """Discard the uploaded body and answer with an empty 200."""
    try:
        discarded = request.body.drain()
    except (OSError, ValueError) as error:
        DATA_PLANE_LOGGER.warning(
            "Failed to read upload body",
            extra={
                "event": "upload_drain_failed",
                "bytes_in": request.body.bytes_read,
                "error_type": type(error).__name__,
            },
        )
        return bad_request_response(request, close=True)

    if DATA_PLANE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        DATA_PLANE_LOGGER.debug(
            "Upload body discarded",
            extra={"event": "upload_drained", "bytes_in": discarded},
        )
    return build_response(200, request, {"Connection": "keep-alive"})


def handle_garbage(
    request: HttpRequest, payload: bytes, default_chunks: int
) -> HttpResponse:
    """Stream ``ckSize`` copies of the shared random payload."""
    raw_chunks = request.query.get(CHUNK_SIZE_PARAM)
    try:
        chunks = parse_chunk_count(raw_chunks, default_chunks)
    except ValueError:
        DATA_PLANE_LOGGER.warning(
            "Invalid chunk size, using default",
            extra={
                "event": "invalid_chunk_size",
                "ck_size": raw_chunks,
                "chunks": default_chunks,
            },
        )
        chunks = default_chunks

    if DATA_PLANE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        DATA_PLANE_LOGGER.debug(
            "Download started", extra={"event": "download_started", "chunks": chunks}
        )
    return streaming_response(
        request,
        GARBAGE_HEADERS.copy(),
        repeat_payload(payload, chunks),
        chunks * len(payload),
    )
