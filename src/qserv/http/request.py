"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes read by Connection.read_request() into an HTTPRequest.

=============================================================================
WHAT A STATIC FILE SERVER NEEDS FROM A REQUEST
=============================================================================

    GET /docs/guide%20v2.html?ref=nav HTTP/1.1\r\n      ← request line
    Host: files.example.com\r\n
    Accept-Encoding: gzip, br\r\n                        ← Compressor
    If-None-Match: "5f2c1a-65a1b2c3-1f4"\r\n             ← Cache Negotiator
    Authorization: Basic YWRtaW46c2VjcmV0\r\n             ← Authenticator
    Origin: https://app.example.com\r\n                  ← CORS Policy
    X-Forwarded-For: 203.0.113.9\r\n                     ← Rate Limiter /
    \r\n                                                   Access Control

The path is percent-decoded here ("guide%20v2.html" → "guide v2.html")
so that every later check sees what the filesystem will see. In
particular "%2e%2e" becomes ".." BEFORE the Path Resolver looks for
traversal segments. The parser itself does not reject "..": refusing
traversal is the resolver's job and it answers 403, not 400.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Attributes:
        status_code: The status to answer with (400, 413 or 505).
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are lowercased at parse time, so lookups are always
    `request.headers.get("if-none-match")`.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    raw_path: str = ""
    client_address: Tuple[str, int] = ("", 0)

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

        HTTP/1.1 defaults to keep-alive unless "Connection: close";
        HTTP/1.0 defaults to close unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def remote_ip(self, trust_proxy: bool = False) -> str:
        """
        Client identity used for rate limiting and access control.

        Behind a reverse proxy every connection comes from the proxy, so
        when `trust_proxy` is set the first X-Forwarded-For entry (the
        original client) is used instead. Never enable it on a server
        that is reachable directly: the header is client-controlled.

        Args:
            trust_proxy: Honour X-Forwarded-For.

        Returns:
            The client IP as a string ("" if unknown).
        """
        if trust_proxy:
            forwarded = self.headers.get("x-forwarded-for", "")
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return self.client_address[0]


class RequestParser:
    """
    Parses raw HTTP/1.x request bytes into HTTPRequest objects.

        raw bytes
           │
           ├──► size check                 → 413
           ├──► split at \\r\\n\\r\\n
           ├──► request line               → 400 / 501 / 505
           ├──► headers (lowercased, repeated ones comma-joined)
           └──► body (Content-Length bytes)
    """

    VALID_METHODS = {
        "GET", "HEAD", "OPTIONS", "POST", "PUT", "DELETE", "PATCH", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 1024 * 1024):
        """
        Args:
            max_request_size: Largest accepted request in bytes.
        """
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Parse one complete request.

        Args:
            data: Bytes of exactly one request (headers and body).
            client_address: Peer (ip, port).

        Returns:
            The parsed request.

        Raises:
            HTTPParseError: The request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # latin-1 maps every byte, so header decoding never fails
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, raw_path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", "0"))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            raw_path=raw_path,
            client_address=client_address,
        )

    def _parse_request_line(
        self, line: str
    ) -> Tuple[str, str, str, Dict[str, List[str]], str]:
        """
        Parse "METHOD SP REQUEST-TARGET SP HTTP-VERSION".

        Returns:
            (method, decoded path, raw path, query params, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError("Invalid request line")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Unsupported method: {method}", status_code=501)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parts = urlsplit(target)
        raw_path = parts.path or "/"
        if not raw_path.startswith("/"):
            # absolute-form targets keep their path; "*" and friends do not map to files
            raise HTTPParseError("Invalid request target")

        try:
            path = unquote(raw_path, errors="strict")
        except UnicodeDecodeError:
            raise HTTPParseError("Invalid percent-encoding in path")
        query_params = parse_qs(parts.query, keep_blank_values=True)

        return method, path, raw_path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines into a lowercase-keyed dict.

        Obsolete line folding is joined onto the previous header, and
        repeated headers are combined with ", " (RFC 7230 §3.2.2).
        Lines that do not look like headers are skipped.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers
