"""
Unit tests for HTTP request parsing.
"""

import pytest

from qserv.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
)


def parse(raw: bytes) -> HTTPRequest:
    return RequestParser().parse(raw, ("127.0.0.1", 12345))


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        """Test parsing a simple GET request."""
        request = parse(sample_get_request)

        assert request.method == "GET"
        assert request.path == "/docs/readme.txt"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)

    def test_parse_headers(self, sample_get_request: bytes):
        """Test that headers are parsed correctly."""
        request = parse(sample_get_request)

        assert request.host == "localhost:8080"
        assert request.user_agent == "pytest"
        assert request.headers["accept-encoding"] == "gzip"
        assert request.is_keep_alive is True

    def test_parse_query_params(self, sample_get_request: bytes):
        """Test query parameter parsing."""
        request = parse(sample_get_request)

        assert request.get_query("page") == "1"
        assert request.get_query("limit") == "10"
        assert request.get_query("missing") is None
        assert request.get_query("missing", "default") == "default"

    def test_path_is_percent_decoded(self):
        """Test that the path is decoded and the raw form kept."""
        request = parse(b"GET /my%20docs/guide.html?q=a%20b HTTP/1.1\r\nHost: test\r\n\r\n")

        assert request.path == "/my docs/guide.html"
        assert request.raw_path == "/my%20docs/guide.html"
        assert request.get_query("q") == "a b"

    def test_encoded_traversal_decoded(self):
        """Test that %2e%2e becomes ".." so the resolver can refuse it."""
        request = parse(b"GET /%2e%2e/etc/passwd HTTP/1.1\r\nHost: test\r\n\r\n")

        assert request.path == "/../etc/passwd"

    def test_invalid_percent_encoding(self):
        """Test that undecodable paths are a 400."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse(b"GET /%ff%fe HTTP/1.1\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_parse_unknown_method(self):
        """Test that unknown methods are 501."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse(b"BREW /pot HTTP/1.1\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 501

    def test_parse_unsupported_version(self):
        """Test that HTTP/2.0 in a request line is a 505."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse(b"GET / HTTP/2.0\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 505

    def test_parse_invalid_request_line(self):
        """Test handling of malformed request line."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse(b"GET\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_parse_incomplete_request(self):
        """Test that a request without the blank line is rejected."""
        with pytest.raises(HTTPParseError):
            parse(b"GET / HTTP/1.1\r\nHost: test\r\n")

    def test_parse_missing_headers(self):
        """Test parsing request with no headers."""
        request = parse(b"GET / HTTP/1.1\r\n\r\n")

        assert request.method == "GET"
        assert request.path == "/"
        assert len(request.headers) == 0

    def test_parse_request_too_large(self):
        """Test that oversized requests are rejected."""
        parser = RequestParser(max_request_size=100)
        raw = b"GET / HTTP/1.1\r\n" + b"X-Large: " + b"A" * 200 + b"\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.status_code == 413

    def test_http_version_parsing(self):
        """Test HTTP/1.0 and HTTP/1.1 keep-alive defaults."""
        request_10 = parse(b"GET / HTTP/1.0\r\nHost: test\r\n\r\n")
        assert request_10.version == "HTTP/1.0"
        assert request_10.is_keep_alive is False

        request_10_ka = parse(b"GET / HTTP/1.0\r\nConnection: keep-alive\r\n\r\n")
        assert request_10_ka.is_keep_alive is True

        request_11 = parse(b"GET / HTTP/1.1\r\nConnection: close\r\n\r\n")
        assert request_11.is_keep_alive is False

    def test_content_length_handling(self):
        """Test that the body is cut at Content-Length."""
        raw = b"POST / HTTP/1.1\r\nContent-Length: 4\r\n\r\nbodyextra"

        assert parse(raw).body == b"body"

    def test_invalid_content_length(self):
        """Test that a non-numeric Content-Length is a 400."""
        with pytest.raises(HTTPParseError):
            parse(b"POST / HTTP/1.1\r\nContent-Length: lots\r\n\r\n")

    def test_case_insensitive_headers(self):
        """Test that header names are case-insensitive."""
        request = parse(b"GET / HTTP/1.1\r\nIF-NONE-MATCH: \"abc\"\r\n\r\n")

        assert request.get_header("If-None-Match") == '"abc"'
        assert request.get_header("if-none-match") == '"abc"'

    def test_repeated_headers_joined(self):
        """Test that repeated headers are comma-joined."""
        raw = b"GET / HTTP/1.1\r\nAccept-Encoding: br\r\nAccept-Encoding: gzip\r\n\r\n"

        assert parse(raw).get_header("accept-encoding") == "br, gzip"


class TestHTTPRequest:
    """Tests for HTTPRequest dataclass."""

    def test_get_header_default(self):
        """Test get_header with default value."""
        request = HTTPRequest(method="GET", path="/")

        assert request.get_header("X-Missing") == ""
        assert request.get_header("X-Missing", "default") == "default"

    def test_remote_ip(self):
        """Test that X-Forwarded-For is used only when trusted."""
        request = HTTPRequest(
            method="GET",
            path="/",
            headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"},
            client_address=("10.0.0.1", 4000),
        )

        assert request.remote_ip() == "10.0.0.1"
        assert request.remote_ip(trust_proxy=True) == "203.0.113.9"

    def test_remote_ip_without_header(self):
        """Test that trust_proxy falls back to the peer address."""
        request = HTTPRequest(method="GET", path="/", client_address=("10.0.0.1", 4000))

        assert request.remote_ip(trust_proxy=True) == "10.0.0.1"
