"""
=============================================================================
ACCESS LOGGING
=============================================================================

One entry per completed request, written to the "qserv.access" logger
after the response has been sent (so bytes and duration are final).

    TEXT (Apache-like):

        203.0.113.9 - - [19/Oct/2026:14:02:11 +0000] "GET /app.js HTTP/1.1"
            200 5120 3.41ms "curl/8.5.0"

    JSON (one object per line, for log aggregators):

        {"method": "GET", "path": "/app.js", "status": 200, "bytes": 5120,
         "duration_ms": 3.41, "client_ip": "203.0.113.9", ...}

Requests rejected by a stage (429, 401, 403) are logged too: every
request that got a response gets exactly one line. Errors sent before
a request could be parsed (400, 408, 413, 503) get a line with "-" in
place of the request line.

=============================================================================
"""

import json
import logging
import time
from dataclasses import asdict, dataclass

from ..http.request import HTTPRequest


logger = logging.getLogger("qserv.access")


@dataclass
class RequestLog:
    """Structured access log entry."""

    method: str
    path: str
    version: str
    status: int
    bytes: int
    duration_ms: float
    client_ip: str
    user_agent: str
    timestamp: str

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    @property
    def request_line(self) -> str:
        if self.method == "-":
            return "-"
        return f"{self.method} {self.path} {self.version}"

    def to_text(self) -> str:
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.request_line}" {self.status} '
            f'{self.bytes} {self.duration_ms:.2f}ms "{self.user_agent or "-"}"'
        )


class AccessLogger:
    """
    Emits RequestLog entries.

    Args:
        log_format: "text" or "json".
        trust_proxy: Log the X-Forwarded-For client rather than the peer.
        enabled: When False nothing is logged.
    """

    def __init__(self, log_format: str = "text", trust_proxy: bool = False, enabled: bool = True):
        self.log_format = log_format
        self.trust_proxy = trust_proxy
        self.enabled = enabled

    def entry(self, request: HTTPRequest, status: int, bytes_sent: int, duration_ms: float) -> RequestLog:
        return RequestLog(
            method=request.method,
            path=request.raw_path or request.path,
            version=request.version,
            status=int(status),
            bytes=bytes_sent,
            duration_ms=duration_ms,
            client_ip=request.remote_ip(self.trust_proxy),
            user_agent=request.user_agent,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def log(self, request: HTTPRequest, status: int, bytes_sent: int, duration_ms: float) -> None:
        if not self.enabled:
            return
        self._emit(self.entry(request, status, bytes_sent, duration_ms))

    def log_unparsed(self, client_ip: str, status: int, bytes_sent: int, duration_ms: float = 0.0) -> None:
        """Log an error sent before any request could be parsed (400, 408, 413, 503...)."""
        if not self.enabled:
            return
        self._emit(RequestLog(
            method="-",
            path="-",
            version="-",
            status=int(status),
            bytes=bytes_sent,
            duration_ms=duration_ms,
            client_ip=client_ip,
            user_agent="",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        ))

    def _emit(self, entry: RequestLog) -> None:
        if self.log_format == "json":
            logger.info(json.dumps(entry.to_dict()))
        else:
            logger.info(entry.to_text())
