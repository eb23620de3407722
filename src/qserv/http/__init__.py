"""
HTTP protocol layer: request parsing, response building, status codes
and MIME types.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import HTTPResponse, ResponseBuilder, format_http_date
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "HTTPResponse",
    "ResponseBuilder",
    "format_http_date",
    "HTTPStatus",
    "get_mime_type",
    "get_content_type",
]
