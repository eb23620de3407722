"""
=============================================================================
CORS (Cross-Origin Resource Sharing)
=============================================================================

Lets pages served from other origins fetch files from this server.

    SIMPLE REQUEST:

    ┌─────────┐                                          ┌─────────┐
    │ Browser │─────────── GET /data.json ──────────────▶│ qserv   │
    │         │           Origin: https://app.com        │         │
    │         │◀──────────────────────────────────────────│         │
    │         │    Access-Control-Allow-Origin:          │         │
    │         │      https://app.com                     │         │
    │         │    Vary: Origin                          │         │
    └─────────┘                                          └─────────┘

    PREFLIGHT:

    ┌─────────┐                                          ┌─────────┐
    │ Browser │─────────── OPTIONS /data.json ──────────▶│ qserv   │
    │         │           Origin: https://app.com        │         │
    │         │◀──────────────────────────────────────────│         │
    │         │    204 No Content                        │         │
    │         │    Access-Control-Allow-Methods: GET,... │         │
    │         │    Access-Control-Allow-Headers: ...     │         │
    │         │    Access-Control-Max-Age: 86400         │         │
    └─────────┘                                          └─────────┘

The matching origin is always echoed back rather than answered with "*",
so that a response is only ever shared with the origin that asked for
it. Vary: Origin keeps shared caches from serving one origin's answer to
another.

A preflight from an origin that is not allowed still gets 204, just
without any Access-Control-* headers; the browser then refuses the real
request on its own.

=============================================================================
"""

from typing import Dict, Iterable

from .base import Continue, Stage, StageOutcome, Terminate
from ..http.request import HTTPRequest
from ..http.status_codes import HTTPStatus


class CORSPolicy(Stage):
    """
    Cross-origin policy.

        policy = CORSPolicy(allowed_origins=["https://app.example.com"])
    """

    def __init__(
        self,
        allowed_origins: Iterable[str] = ("*",),
        allowed_methods: Iterable[str] = ("GET", "HEAD", "OPTIONS"),
        allowed_headers: Iterable[str] = ("Content-Type", "Authorization"),
        max_age: int = 86400,
        enabled: bool = True,
    ):
        self.allowed_origins = [origin.rstrip("/") for origin in allowed_origins]
        self.allowed_methods = list(allowed_methods)
        self.allowed_headers = list(allowed_headers)
        self.max_age = max_age
        self.enabled = enabled

    def is_origin_allowed(self, origin: str) -> bool:
        if not origin:
            return False
        return "*" in self.allowed_origins or origin.rstrip("/") in self.allowed_origins

    def origin_headers(self, origin: str) -> Dict[str, str]:
        """Headers for a request from `origin` (empty if not allowed)."""
        if not self.is_origin_allowed(origin):
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Vary": "Origin",
        }

    def preflight_headers(self, origin: str) -> Dict[str, str]:
        headers = self.origin_headers(origin)
        if not headers:
            return {}
        headers.update({
            "Access-Control-Allow-Methods": ", ".join(self.allowed_methods),
            "Access-Control-Allow-Headers": ", ".join(self.allowed_headers),
            "Access-Control-Max-Age": str(self.max_age),
        })
        return headers

    def check(self, request: HTTPRequest) -> StageOutcome:
        if not self.enabled:
            return Continue()

        origin = request.get_header("origin")

        if request.method == "OPTIONS":
            return Terminate(
                HTTPStatus.NO_CONTENT,
                headers=self.preflight_headers(origin),
                reason="CORS preflight",
            )

        return Continue(headers=self.origin_headers(origin))
