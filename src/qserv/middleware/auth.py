"""
=============================================================================
HTTP BASIC AUTHENTICATION
=============================================================================

    Request:   Authorization: Basic YWRtaW46czNjcmV0
                                    └──── base64("admin:s3cret")

    Failure:   HTTP/1.1 401 Unauthorized
               WWW-Authenticate: Basic realm="Restricted"

The browser shows its login prompt when it sees the WWW-Authenticate
challenge and retries with credentials. Nothing is remembered between
requests: every request carries and is checked against its own header.

Both username and password are compared with hmac.compare_digest, and
both comparisons always run, so response timing does not reveal which
half was wrong or how much of it matched.

=============================================================================
"""

import base64
import binascii
import hmac
from typing import Optional, Tuple

from .base import Continue, Stage, StageOutcome, Terminate
from ..http.request import HTTPRequest
from ..http.status_codes import HTTPStatus


def parse_basic_credentials(header: str) -> Optional[Tuple[bytes, bytes]]:
    """
    Decode an Authorization header value.

    Returns:
        (username, password) as raw bytes, or None if the header is not
        well-formed Basic credentials.
    """
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    username, sep, password = decoded.partition(b":")
    if not sep:
        return None
    return username, password


class BasicAuthenticator(Stage):
    """Stateless Basic credential check."""

    def __init__(self, username: str, password: str, realm: str = "Restricted", enabled: bool = True):
        self.enabled = enabled
        self.realm = realm or "Restricted"
        self._username = username.encode("utf-8")
        self._password = password.encode("utf-8")

    def authenticate(self, header: str) -> bool:
        """True when `header` carries exactly the configured credentials."""
        credentials = parse_basic_credentials(header)
        if credentials is None:
            return False
        username, password = credentials
        user_ok = hmac.compare_digest(username, self._username)
        pass_ok = hmac.compare_digest(password, self._password)
        return user_ok and pass_ok

    @property
    def challenge(self) -> str:
        realm = self.realm.replace("\\", "\\\\").replace('"', '\\"')
        return f'Basic realm="{realm}"'

    def check(self, request: HTTPRequest) -> StageOutcome:
        if not self.enabled:
            return Continue()
        if self.authenticate(request.get_header("authorization")):
            return Continue()
        return Terminate(
            HTTPStatus.UNAUTHORIZED,
            headers={"WWW-Authenticate": self.challenge},
            reason="missing or invalid credentials",
        )
