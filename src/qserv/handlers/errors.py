"""
Error pages.

Every 4xx/5xx the server sends is rendered here, either from a
configured custom page:

    "custom_error_pages": {"404": "errors/404.html"}

or from a minimal built-in page naming the status. Relative page paths
are taken from the web root. Bodies never include filesystem paths or
exception details, whatever went wrong.
"""

import html
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from ..http.mime_types import get_content_type
from ..http.response import HTTPResponse, ResponseBuilder
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


BUILTIN_CONTENT_TYPE = "text/html; charset=utf-8"


def builtin_page(status: HTTPStatus) -> str:
    text = html.escape(f"{int(status)} {status.phrase}")
    return (
        "<!DOCTYPE html>\n"
        f"<html><head><meta charset=\"utf-8\"><title>{text}</title></head>\n"
        f"<body><h1>{text}</h1></body></html>\n"
    )


class ErrorPresenter:
    """
    Renders error bodies.

        presenter = ErrorPresenter({404: "404.html"}, root_dir="public")
        response = presenter.response(HTTPStatus.NOT_FOUND)
    """

    def __init__(self, custom_pages: Optional[Mapping[int, str]] = None, root_dir: str = "."):
        root = Path(root_dir)
        self.pages: Dict[int, Path] = {}
        for code, page in (custom_pages or {}).items():
            path = Path(page)
            self.pages[int(code)] = path if path.is_absolute() else root / path

    def render(self, status: HTTPStatus) -> Tuple[bytes, str]:
        """
        Body and content type for `status`.

        Custom pages are read on every call so edits show up without a
        restart; an unreadable page falls back to the built-in one.
        """
        page = self.pages.get(int(status))
        if page is not None:
            try:
                return page.read_bytes(), get_content_type(page)
            except OSError as e:
                logger.warning(f"Custom error page for {int(status)} unreadable: {e}")
        return builtin_page(status).encode("utf-8"), BUILTIN_CONTENT_TYPE

    def response(self, status: HTTPStatus, headers: Optional[Mapping[str, str]] = None) -> HTTPResponse:
        """A complete error response; `headers` are kept (Retry-After, Allow...)."""
        status = HTTPStatus(status)
        builder = ResponseBuilder().status(status).headers(dict(headers or {}))
        if not status.has_body:
            return builder.build()
        body, content_type = self.render(status)
        return builder.content_type(content_type).body(body).no_cache().build()
