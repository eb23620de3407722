"""
End-to-end tests: a real QServer on a local port, spoken to over raw
sockets.
"""

import gzip
import logging
import socket

from qserv.config import BasicAuthSettings, RateLimitSettings

from ..conftest import INDEX_HTML, STYLE_CSS, RawResponse


class TestServing:
    """Tests for serving files over the wire."""

    def test_get_index(self, live_server):
        """GET / serves the index with the usual headers."""
        server = live_server()

        response = server.get("/")

        assert response.status == 200
        assert response.body == INDEX_HTML
        assert response.headers["content-type"] == "text/html; charset=utf-8"
        assert response.headers["content-length"] == str(len(INDEX_HTML))
        assert response.headers["server"] == "qserv"
        assert response.headers["connection"] == "close"
        assert "etag" in response.headers
        assert "date" in response.headers

    def test_not_found(self, live_server):
        """Missing files are 404."""
        response = live_server().get("/nope.html")

        assert response.status == 404
        assert b"404 Not Found" in response.body

    def test_traversal_refused(self, live_server):
        """Encoded traversal is refused with 403."""
        response = live_server().get("/%2e%2e/%2e%2e/etc/passwd")

        assert response.status == 403

    def test_head(self, live_server):
        """HEAD sends GET's headers and no body."""
        response = live_server().get("/style.css", method="HEAD")

        assert response.status == 200
        assert response.headers["content-length"] == str(len(STYLE_CSS))
        assert response.body == b""

    def test_not_modified(self, live_server):
        """Revalidating with the ETag yields 304."""
        server = live_server()
        etag = server.get("/index.html").headers["etag"]

        response = server.get("/index.html", headers={"If-None-Match": etag})

        assert response.status == 304
        assert response.body == b""
        assert "content-length" not in response.headers

    def test_gzip(self, live_server):
        """Compressible files are gzipped when accepted."""
        response = live_server().get("/style.css", headers={"Accept-Encoding": "gzip"})

        assert response.headers["content-encoding"] == "gzip"
        assert response.headers["vary"] == "Accept-Encoding"
        assert gzip.decompress(response.body) == STYLE_CSS

    def test_streamed_file(self, live_server):
        """Large files are streamed with their length."""
        server = live_server(performance={"stream_threshold": 100})

        response = server.get("/style.css")

        assert response.headers["content-length"] == str(len(STYLE_CSS))
        assert response.body == STYLE_CSS

    def test_streamed_gzip_is_chunked(self, live_server):
        """A gzipped stream uses chunked transfer encoding."""
        server = live_server(performance={"stream_threshold": 100})

        response = server.get("/style.css", headers={"Accept-Encoding": "gzip"})

        assert response.headers["transfer-encoding"] == "chunked"
        assert "content-length" not in response.headers
        assert gzip.decompress(response.body) == STYLE_CSS

    def test_directory_listing(self, live_server):
        """Listings are served for directories without an index."""
        response = live_server(features={"directory_listing": True}).get("/docs/")

        assert response.status == 200
        assert b"readme.txt" in response.body


class TestConnections:
    """Tests for connection handling."""

    def test_keep_alive(self, live_server):
        """Two requests are served on one connection."""
        server = live_server()
        raw = (
            b"GET /index.html HTTP/1.1\r\nHost: localhost\r\n\r\n"
            b"GET /docs/readme.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
        )

        data = server.request(raw)

        assert data.count(b"HTTP/1.1 200 OK\r\n") == 2
        assert b"Connection: keep-alive\r\n" in data
        assert b"Keep-Alive: timeout=5\r\n" in data
        assert data.endswith(b"read me\n")

    def test_bad_request(self, live_server):
        """Malformed request lines get 400 and the connection closes."""
        data = live_server().request(b"NONSENSE\r\n\r\n")

        assert RawResponse.parse(data).status == 400

    def test_unparsed_errors_are_access_logged(self, live_server, caplog):
        """A request that never parsed still gets an access log line."""
        server = live_server()

        with caplog.at_level(logging.INFO, logger="qserv.access"):
            server.request(b"NONSENSE\r\n\r\n")

        lines = [r.getMessage() for r in caplog.records if r.name == "qserv.access"]
        assert len(lines) == 1
        assert lines[0].startswith("127.0.0.1 - - [")
        assert '"-" 400 ' in lines[0]

    def test_unsupported_version(self, live_server):
        """Unknown protocol versions get 505."""
        data = live_server().request(b"GET / HTTP/3.0\r\n\r\n")

        assert RawResponse.parse(data).status == 505

    def test_request_too_large(self, live_server):
        """A declared body beyond max_request_size gets 413."""
        server = live_server(performance={"max_request_size": 4096})

        data = server.request(b"POST / HTTP/1.1\r\nHost: x\r\nContent-Length: 1000000\r\n\r\n")

        assert RawResponse.parse(data).status == 413

    def test_read_timeout(self, live_server):
        """A client that sends nothing gets 408."""
        server = live_server(performance={"read_timeout": 0.5})

        with socket.create_connection(("127.0.0.1", server.port), timeout=5.0) as s:
            data = s.recv(65536)

        assert RawResponse.parse(data).status == 408

    def test_method_not_allowed(self, live_server):
        """POST is answered with 405 and Allow."""
        data = live_server().request(b"POST / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")

        response = RawResponse.parse(data)
        assert response.status == 405
        assert response.headers["allow"] == "GET, HEAD, OPTIONS"


class TestPolicies:
    """Tests for request-side policies end to end."""

    def test_basic_auth(self, live_server):
        """Protected servers challenge, then serve with credentials."""
        server = live_server(security={"basic_auth": BasicAuthSettings(
            enabled=True, username="admin", password="s3cret",
        )})

        denied = server.get("/")
        allowed = server.get("/", headers={"Authorization": "Basic YWRtaW46czNjcmV0"})

        assert denied.status == 401
        assert denied.headers["www-authenticate"] == 'Basic realm="Restricted"'
        assert allowed.status == 200

    def test_rate_limit(self, live_server):
        """Clients beyond the burst get 429."""
        server = live_server(performance={"rate_limit": RateLimitSettings(
            enabled=True, requests_per_second=0.1, burst=2,
        )})

        statuses = [server.get("/").status for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_security_headers_on_errors(self, live_server):
        """Error responses carry the security headers too."""
        response = live_server().get("/missing")

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"


class TestLifecycle:
    """Tests for start and stop."""

    def test_stop(self, live_server):
        """stop() closes the listener and returns once stopped."""
        server = live_server()
        assert server.get("/").status == 200

        assert server.server.stop(wait=True, timeout=10.0)
        assert not server.server.is_running
