"""
pytest configuration and fixtures.
"""

import dataclasses
import socket
import threading
from pathlib import Path
from typing import Optional

import pytest

from qserv.config import Config, LoggingSettings, ServerSettings
from qserv.http import HTTPRequest
from qserv.server import QServer


INDEX_HTML = b"<!DOCTYPE html><html><body><h1>home</h1></body></html>\n"
STYLE_CSS = b"body { color: #333; margin: 0 auto; }\n" * 200


@pytest.fixture
def web_root(tmp_path: Path) -> Path:
    """
    A small site:

        index.html
        style.css            (large enough to be compressed)
        logo.png
        docs/readme.txt      (no index: listable)
        app/index.html
    """
    root = tmp_path / "www"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "style.css").write_bytes(STYLE_CSS)
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
    (root / "docs").mkdir()
    (root / "docs" / "readme.txt").write_text("read me\n")
    (root / "app").mkdir()
    (root / "app" / "index.html").write_text("<h1>app</h1>\n")
    return root


@pytest.fixture
def make_config(web_root: Path):
    """
    Build a Config rooted at the test site.

        config = make_config(features={"directory_listing": True})

    Keyword arguments name a section; their dicts replace fields in it.
    """
    def _make(**sections) -> Config:
        config = Config(
            server=ServerSettings(host="127.0.0.1", port=8080, root_dir=str(web_root)),
            logging=LoggingSettings(level="warn", color=False),
        )
        for section, values in sections.items():
            current = getattr(config, section)
            config = dataclasses.replace(config, **{section: dataclasses.replace(current, **values)})
        return config

    return _make


@pytest.fixture
def config(make_config) -> Config:
    """Default test configuration."""
    return make_config()


def make_request(
    path: str = "/",
    method: str = "GET",
    headers: Optional[dict] = None,
    client_ip: str = "127.0.0.1",
    version: str = "HTTP/1.1",
) -> HTTPRequest:
    """A parsed request as the pipeline sees it (header names lowercase)."""
    return HTTPRequest(
        method=method,
        path=path,
        version=version,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        raw_path=path,
        client_address=(client_ip, 50000),
    )


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /docs/readme.txt?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept-Encoding: gzip\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class LiveServer:
    """A QServer running on a background thread."""

    def __init__(self, server: QServer, port: int):
        self.server = server
        self.port = port
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.stop()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def request(self, raw: bytes, timeout: float = 5.0) -> bytes:
        """Send raw request bytes and read until the server closes."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=timeout) as s:
            s.sendall(raw)
            chunks = []
            while True:
                data = s.recv(65536)
                if not data:
                    break
                chunks.append(data)
        return b"".join(chunks)

    def get(self, path: str, headers: Optional[dict] = None, method: str = "GET") -> "RawResponse":
        lines = [f"{method} {path} HTTP/1.1", "Host: localhost", "Connection: close"]
        lines.extend(f"{name}: {value}" for name, value in (headers or {}).items())
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
        return RawResponse.parse(self.request(raw))


@dataclasses.dataclass
class RawResponse:
    status: int
    headers: dict
    body: bytes

    @classmethod
    def parse(cls, data: bytes) -> "RawResponse":
        head, _, body = data.partition(b"\r\n\r\n")
        lines = head.decode("latin-1").split("\r\n")
        status = int(lines[0].split(" ")[1])
        headers = {}
        for line in lines[1:]:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
        if headers.get("transfer-encoding") == "chunked":
            body = _dechunk(body)
        return cls(status, headers, body)


def _dechunk(body: bytes) -> bytes:
    out = b""
    while body:
        size_line, _, body = body.partition(b"\r\n")
        size = int(size_line, 16)
        if size == 0:
            break
        out += body[:size]
        body = body[size + 2:]
    return out


@pytest.fixture
def live_server(make_config, free_port: int):
    """
    Start a server for the test; call it with section overrides.

        server = live_server(features={"directory_listing": True})
        response = server.get("/docs/")
    """
    started = []

    def _start(**sections) -> LiveServer:
        sections["performance"] = {
            "min_workers": 2,
            "max_workers": 4,
            "shutdown_timeout": 5.0,
            **sections.get("performance", {}),
        }
        sections["server"] = {**sections.get("server", {}), "port": free_port}
        config = make_config(**sections)
        live = LiveServer(QServer(config, install_signals=False), free_port)
        live.start()
        started.append(live)
        return live

    yield _start

    for live in started:
        live.stop()
