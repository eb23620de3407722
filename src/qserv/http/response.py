"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

HTTPResponse is what every pipeline stage hands back to the orchestrator
and what Connection finally writes to the socket.

=============================================================================
TWO KINDS OF BODY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  body: bytes                                                         │
    │     Error pages, listings, small files. Content-Length is known,     │
    │     the whole response goes out in one sendall().                    │
    │                                                                      │
    │  stream: Iterator[bytes]                                             │
    │     Large files. Headers go out first, then chunks as the file is    │
    │     read. If the client disconnects the writer stops and calls       │
    │     close(), which closes the generator and with it the open file.   │
    └─────────────────────────────────────────────────────────────────────┘

A stream either has an explicit Content-Length (plain file) or is sent
with "Transfer-Encoding: chunked" (gzip applied on the fly, so the final
length is unknown up front):

    1a\\r\\n                    ← chunk size in hex
    <26 bytes of data>\\r\\n
    0\\r\\n                      ← last chunk
    \\r\\n

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Union

from .status_codes import HTTPStatus


@dataclass
class HTTPResponse:
    """
    An HTTP response waiting to be written.

    Header names keep the case they were set with; lookups in this
    codebase always use the canonical form ("Content-Type", "ETag").
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    stream: Optional[Iterator[bytes]] = field(default=None, repr=False)
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """e.g. "HTTP/1.1 304 Not Modified"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    @property
    def is_chunked(self) -> bool:
        return self.headers.get("Transfer-Encoding", "").lower() == "chunked"

    @property
    def content_length(self) -> Optional[int]:
        """Declared body length, or None when it is not known (chunked)."""
        if "Content-Length" in self.headers:
            return int(self.headers["Content-Length"])
        if self.stream is not None:
            return None
        return len(self.body)

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def add_vary(self, value: str) -> "HTTPResponse":
        """Append a field to the Vary header without duplicating it."""
        existing = [v.strip() for v in self.headers.get("Vary", "").split(",") if v.strip()]
        if value not in existing:
            existing.append(value)
        self.headers["Vary"] = ", ".join(existing)
        return self

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Set a bytes body (strings are UTF-8 encoded), dropping any stream."""
        self.close()
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers.pop("Content-Length", None)
        return self

    def drop_body(self) -> "HTTPResponse":
        """
        Discard the body but keep the headers describing it.

        Used for HEAD requests: Content-Length must stay what GET would
        have sent, so it is pinned before the bytes are thrown away.
        """
        if self.stream is None and "Content-Length" not in self.headers and self.status.has_body:
            self.headers["Content-Length"] = str(len(self.body))
        self.close()
        self.body = b""
        return self

    def close(self) -> None:
        """Release the body stream (and any file it holds open)."""
        if self.stream is not None:
            close = getattr(self.stream, "close", None)
            if close is not None:
                close()
            self.stream = None

    def head_bytes(self, server_name: str = "qserv") -> bytes:
        """
        Serialize the status line and headers, including the blank line.

        Adds Date and Server when missing, and Content-Length for bytes
        bodies that are not chunked. 204 and 304 responses never get a
        Content-Length.
        """
        response_headers = dict(self.headers)

        if (
            self.status.has_body
            and self.stream is None
            and not self.is_chunked
            and "Content-Length" not in response_headers
        ):
            response_headers["Content-Length"] = str(len(self.body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in response_headers.items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    def to_bytes(self, server_name: str = "qserv") -> bytes:
        """Serialize a bytes-body response in full."""
        return self.head_bytes(server_name) + self.body


class ResponseBuilder:
    """
    Fluent builder for responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .html("<h1>Index of /</h1>")
            .no_cache()
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body = b""
        self._stream: Optional[Iterator[bytes]] = None

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def stream(self, chunks: Iterator[bytes], length: Optional[int] = None) -> "ResponseBuilder":
        """
        Use an iterator as the body.

        Args:
            chunks: Body chunks; generators are closed when the response is.
            length: Total size if known, sent as Content-Length.
        """
        self._stream = chunks
        if length is not None:
            self._headers["Content-Length"] = str(length)
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        return self.content_type(content_type).body(text)

    def html(self, html: str) -> "ResponseBuilder":
        return self.text(html, "text/html; charset=utf-8")

    def no_cache(self) -> "ResponseBuilder":
        """Require revalidation on every use (generated pages)."""
        return self.header("Cache-Control", "no-cache")

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        return self.header("Cache-Control", f"max-age={max_age}")

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
            stream=self._stream,
        )


def format_http_date(value: Union[datetime, float]) -> str:
    """
    Format a datetime or POSIX timestamp as an IMF-fixdate (RFC 7231 §7.1.1.1).

        >>> format_http_date(0)
        'Thu, 01 Jan 1970 00:00:00 GMT'
    """
    if not isinstance(value, datetime):
        value = datetime.fromtimestamp(value, tz=timezone.utc)
    elif value.tzinfo is not None:
        value = value.astimezone(timezone.utc)

    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[value.weekday()]}, "
        f"{value.day:02d} {months[value.month - 1]} {value.year} "
        f"{value.hour:02d}:{value.minute:02d}:{value.second:02d} GMT"
    )
