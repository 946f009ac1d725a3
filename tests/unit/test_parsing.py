"""Unit tests covering HTTP request parsing and response writing."""

import pytest

from speedtest_backend.domain.correlation_id import (
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from speedtest_backend.domain.http_types import HttpRequest, HttpResponse
from speedtest_backend.pipeline.io import (
    determine_body_framing,
    parse_headers,
    parse_request_line,
    receive_request,
    send_response,
)
from speedtest_backend.pipeline.validation import HeaderTooLarge
from tests.utils.http import FakeSocket, parse_http_response


@pytest.fixture(autouse=True)
def reset_correlation_id():
    clear_correlation_id()
    yield
    clear_correlation_id()


def test_parse_headers_normalizes_keys_and_skips_invalid_lines():
    headers = parse_headers(
        [
            "Content-Length: 10",
            "X-Real-IP:  203.0.113.9 ",
            "invalid-line",
            " folded: value",
        ]
    )

    assert headers == {"content-length": "10", "x-real-ip": "203.0.113.9"}


def test_parse_request_line_decodes_path_and_query():
    method, path, query = parse_request_line(
        "get /backend/getIP.php?isp=true&distance=mi&isp=false HTTP/1.1"
    )

    assert method == "GET"
    assert path == "/backend/getIP.php"
    assert query == {"isp": "true", "distance": "mi"}


@pytest.mark.parametrize("line", ["GET /", "GET / FTP/1.0", ""])
def test_parse_request_line_rejects_malformed(line):
    with pytest.raises(ValueError):
        parse_request_line(line)


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({}, (0, False)),
        ({"content-length": "42"}, (42, False)),
        ({"transfer-encoding": "chunked"}, (0, True)),
        ({"transfer-encoding": "gzip, chunked", "content-length": "5"}, (0, True)),
    ],
)
def test_determine_body_framing(headers, expected):
    assert determine_body_framing(headers) == expected


@pytest.mark.parametrize(
    "headers",
    [
        {"content-length": "-1"},
        {"content-length": "ten"},
        {"transfer-encoding": "gzip"},
    ],
)
def test_determine_body_framing_rejects_invalid(headers):
    with pytest.raises(ValueError):
        determine_body_framing(headers)


def test_receive_request_handles_partial_reads_and_pipelining():
    request_bytes = (
        b"POST /empty HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"Content-Length: 5\r\n\r\n"
        b"helloGET /garbage HTTP/1.1\r\n\r\n"
    )
    client = FakeSocket([request_bytes[:20], request_bytes[20:50], request_bytes[50:]])

    request = receive_request(client, b"", "127.0.0.1:5000")

    assert isinstance(request, HttpRequest)
    assert request.method == "POST"
    assert request.path == "/empty"
    assert request.remote_addr == "127.0.0.1:5000"
    assert request.body.read() == b"hello"
    assert request.body.leftover() == b"GET /garbage HTTP/1.1\r\n\r\n"


def test_receive_request_sends_continue_before_reading_body():
    client = FakeSocket(
        [
            b"POST /empty HTTP/1.1\r\nContent-Length: 5\r\n"
            b"Expect: 100-continue\r\n\r\n",
            b"hello",
        ]
    )

    request = receive_request(client, b"", "")

    assert client.output == b""
    assert request.body.read() == b"hello"
    assert client.output == b"HTTP/1.1 100 Continue\r\n\r\n"


def test_receive_request_skips_continue_when_body_already_sent():
    client = FakeSocket(
        [
            b"POST /empty HTTP/1.1\r\nContent-Length: 5\r\n"
            b"Expect: 100-continue\r\n\r\nhello"
        ]
    )

    request = receive_request(client, b"", "")

    assert request.body.drain() == 5
    assert client.output == b""


def test_receive_request_adopts_incoming_request_id():
    client = FakeSocket([b"GET / HTTP/1.1\r\nX-Request-ID: trace-42\r\n\r\n"])

    receive_request(client, b"", "")

    assert get_correlation_id() == "trace-42"


def test_receive_request_returns_none_when_socket_closes_early():
    client = FakeSocket([b"GET / HTTP/1.1\r\n"])

    assert receive_request(client, b"", "") is None


def test_receive_request_rejects_oversized_header_block():
    client = FakeSocket([b"GET / HTTP/1.1\r\nX-Pad: " + b"a" * 70_000])

    with pytest.raises(HeaderTooLarge):
        receive_request(client, b"", "")


def test_send_response_sets_length_and_request_id():
    set_correlation_id("corr-1")
    client = FakeSocket()
    response = HttpResponse("HTTP/1.1 200 OK", {"X-Test": "1"}, b"body", False)

    assert send_response(client, response)

    parsed = parse_http_response(client.output)
    assert parsed.status_code == 200
    assert parsed.headers["content-length"] == "4"
    assert parsed.headers["x-request-id"] == "corr-1"
    assert "connection" not in parsed.headers
    assert parsed.body == b"body"


def test_send_response_streams_and_declares_total_length():
    client = FakeSocket()
    response = HttpResponse(
        "HTTP/1.1 200 OK",
        {},
        b"",
        True,
        body_iter=iter([b"abc", b"def"]),
        content_length=6,
    )

    assert send_response(client, response)

    parsed = parse_http_response(client.output)
    assert parsed.headers["content-length"] == "6"
    assert parsed.headers["connection"] == "close"
    assert parsed.body == b"abcdef"


def test_send_response_head_only_omits_body():
    client = FakeSocket()
    response = HttpResponse(
        "HTTP/1.1 200 OK",
        {},
        b"",
        False,
        body_iter=iter([b"x" * 10]),
        content_length=10,
    )

    assert send_response(client, response, head_only=True)

    assert client.output.endswith(b"\r\n\r\n")
    assert parse_http_response(client.output).headers["content-length"] == "10"


def test_send_response_reports_mid_stream_failure(caplog):
    client = FakeSocket(fail_after_sends=2)
    response = HttpResponse(
        "HTTP/1.1 200 OK",
        {},
        b"",
        False,
        body_iter=iter([b"a", b"b", b"c"]),
        content_length=3,
    )

    assert send_response(client, response) is False

    failures = [
        r for r in caplog.records if getattr(r, "event", "") == "body_write_failed"
    ]
    assert len(failures) == 1
    assert failures[0].chunk_index == 1
