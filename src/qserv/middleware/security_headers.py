"""
Security response headers.

Adds the configured header set (X-Content-Type-Options, X-Frame-Options,
Referrer-Policy...) to every response, errors included, and
Strict-Transport-Security when the server runs HTTPS. Headers already on
the response are left alone.
"""

from typing import Dict, Mapping, Optional

from ..http.response import HTTPResponse


class SecurityHeaders:
    """Response-side header injector."""

    def __init__(
        self,
        headers: Optional[Mapping[str, str]] = None,
        https: bool = False,
        hsts_max_age: int = 31536000,
    ):
        self.headers: Dict[str, str] = dict(headers or {})
        if https and hsts_max_age > 0:
            self.headers.setdefault("Strict-Transport-Security", f"max-age={hsts_max_age}")

    def apply(self, response: HTTPResponse) -> HTTPResponse:
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response
