"""
=============================================================================
GZIP COMPRESSION
=============================================================================

Compresses text responses for clients that accept gzip.

    ┌────────────────────────────────────────────────────────────────────┐
    │  Accept-Encoding: gzip, deflate, br                                │
    │                                                                    │
    │  style.css  text/css       48 KB ──gzip──► 9 KB   ✓ sent gzipped  │
    │  photo.jpg  image/jpeg    310 KB                  ✗ not text       │
    │  tiny.txt   text/plain     80 B                   ✗ under minimum  │
    └────────────────────────────────────────────────────────────────────┘

Two paths:

    bytes body   gzip.compress(); kept only when actually smaller.
                 Content-Length is updated.

    stream       Compressed chunk by chunk with a zlib gzip stream and
                 sent with Transfer-Encoding: chunked, since the final
                 size is unknown up front. HTTP/1.0 clients cannot take
                 chunked bodies, so their streams go out uncompressed.

Either way Vary: Accept-Encoding is added, so shared caches keep the
compressed and plain variants apart.

=============================================================================
"""

import gzip
import logging
import zlib
from typing import Dict, Iterator, Optional, Set, Tuple

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


COMPRESSIBLE_TYPES: Set[str] = {
    "application/json",
    "application/javascript",
    "application/xml",
    "application/xhtml+xml",
    "application/manifest+json",
    "image/svg+xml",
}

# wbits for zlib that produce a gzip header and trailer
GZIP_WBITS = 16 + zlib.MAX_WBITS


def _quality(params: str) -> float:
    params = params.replace(" ", "").lower()
    for param in params.split(";"):
        if param.startswith("q="):
            try:
                return float(param[2:])
            except ValueError:
                return 0.0
    return 1.0


def accepts_gzip(accept_encoding: str) -> bool:
    """
    True if the Accept-Encoding value allows gzip.

    An explicit gzip (or x-gzip) entry wins over "*".

        >>> accepts_gzip("gzip, deflate")
        True
        >>> accepts_gzip("gzip;q=0, br")
        False
        >>> accepts_gzip("*;q=0, gzip")
        True
    """
    explicit: Optional[float] = None
    wildcard: Optional[float] = None
    for part in accept_encoding.split(","):
        coding, _, params = part.strip().partition(";")
        coding = coding.strip().lower()
        if coding in ("gzip", "x-gzip"):
            explicit = max(explicit or 0.0, _quality(params))
        elif coding == "*":
            wildcard = _quality(params)
    if explicit is not None:
        return explicit > 0
    return wildcard is not None and wildcard > 0


def is_compressible(content_type: str) -> bool:
    base_type = content_type.split(";")[0].strip().lower()
    return base_type.startswith("text/") or base_type in COMPRESSIBLE_TYPES


class GzipStream:
    """
    Lazily gzip-encodes an iterator of chunks.

    close() closes the source as well, even if iteration never started,
    so an abandoned response never leaves a file open.
    """

    def __init__(self, chunks: Iterator[bytes], level: int = 6):
        self._chunks = iter(chunks)
        self._source = chunks
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)
        self._done = False

    def __iter__(self) -> "GzipStream":
        return self

    def __next__(self) -> bytes:
        while not self._done:
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._done = True
                self.close()
                return self._compressor.flush()
            data = self._compressor.compress(chunk)
            if data:
                return data
        raise StopIteration

    def close(self) -> None:
        self._done = True
        close = getattr(self._source, "close", None)
        if close is not None:
            close()


class Compressor:
    """
    Response-side gzip encoder.

    Args:
        level: gzip level 1-9.
        min_size: Bodies smaller than this are sent as-is.
        enabled: When False apply() is a no-op.
    """

    def __init__(self, level: int = 6, min_size: int = 1024, enabled: bool = True):
        self.level = level
        self.min_size = min_size
        self.enabled = enabled

    def compress_body(
        self,
        body: bytes,
        accept_encoding: str,
        content_type: str,
    ) -> Tuple[bytes, Dict[str, str]]:
        """
        Compress a complete body if worthwhile.

        Returns:
            (body to send, headers to add). When nothing was compressed the
            original body comes back with no headers.
        """
        if not accepts_gzip(accept_encoding):
            return body, {}
        if len(body) < self.min_size or not is_compressible(content_type):
            return body, {}

        compressed = gzip.compress(body, compresslevel=self.level)
        if len(compressed) >= len(body):
            return body, {}

        return compressed, {
            "Content-Encoding": "gzip",
            "Content-Length": str(len(compressed)),
        }

    def apply(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        """Compress `response` in place when the request allows it."""
        if not self.enabled or not response.status.has_body:
            return response
        if "Content-Encoding" in response.headers:
            return response

        content_type = response.headers.get("Content-Type", "")
        if not is_compressible(content_type):
            return response

        # the representation depends on Accept-Encoding whether or not
        # this particular client gets gzip
        response.add_vary("Accept-Encoding")

        accept_encoding = request.get_header("accept-encoding")

        if response.stream is None:
            body, headers = self.compress_body(response.body, accept_encoding, content_type)
            if headers:
                logger.debug(f"gzip {request.path}: {len(response.body)} -> {len(body)} bytes")
                response.body = body
                response.headers.update(headers)
            return response

        return self._apply_stream(request, response, accept_encoding)

    def _apply_stream(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        accept_encoding: str,
    ) -> HTTPResponse:
        if request.version == "HTTP/1.0" or not accepts_gzip(accept_encoding):
            return response

        length: Optional[int] = response.content_length
        if length is not None and length < self.min_size:
            return response

        response.stream = GzipStream(response.stream, self.level)
        response.headers.pop("Content-Length", None)
        response.headers["Content-Encoding"] = "gzip"
        response.headers["Transfer-Encoding"] = "chunked"
        return response
