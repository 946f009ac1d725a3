"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from speedtest_backend.domain.request_body import RequestBody


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request whose body is read lazily."""

    method: str
    path: str
    headers: dict[str, str]
    body: RequestBody = field(default_factory=RequestBody.empty)
    query: dict[str, str] = field(default_factory=dict)
    remote_addr: str = ""


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    Streaming responses leave ``body`` empty and provide ``body_iter`` together
    with the total ``content_length``.
    """

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    content_length: Optional[int] = None

    @property
    def status_code(self) -> int:
        return int(self.status_line.split(" ", 2)[1])


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
