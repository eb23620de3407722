"""
=============================================================================
CONDITIONAL REQUESTS
=============================================================================

Computes validators for a file and decides between 200 and 304.

    First visit:

        GET /app.js
        ◄── 200 OK
            ETag: "1c9a3f02-18b4e1a2c3d4e5f6-1400"
            Last-Modified: Mon, 19 Oct 2026 14:02:11 GMT
            Cache-Control: max-age=3600

    Revalidation:

        GET /app.js
        If-None-Match: "1c9a3f02-18b4e1a2c3d4e5f6-1400"
        ◄── 304 Not Modified        (no body, nothing compressed)

=============================================================================
ETAG FORMAT
=============================================================================

    "<crc32 of relative path>-<mtime in ns, hex>-<size, hex>"

Recomputed on every request from a fresh stat, so an edited file gets a
new tag immediately. With hash_content the tag is a SHA-256 of the bytes
instead, which survives touch/copy but costs a full read.

=============================================================================
PRECEDENCE
=============================================================================

If-None-Match, when present, decides alone; If-Modified-Since is only
consulted without it. Last-Modified has one-second resolution, so the
comparison truncates the file's mtime to whole seconds.

=============================================================================
"""

import hashlib
import zlib
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional, Union

from .resolver import RegularFile
from ..http.response import format_http_date


@dataclass(frozen=True)
class CacheValidators:
    etag: Optional[str]
    last_modified: str


@dataclass
class NotModified:
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class Serve:
    headers: Dict[str, str] = field(default_factory=dict)


CacheDecision = Union[NotModified, Serve]


def _opaque(tag: str) -> str:
    tag = tag.strip()
    if tag.startswith("W/"):
        tag = tag[2:]
    return tag


def etag_matches(if_none_match: str, etag: str) -> bool:
    """Weak comparison of an If-None-Match value against `etag`."""
    if if_none_match.strip() == "*":
        return True
    current = _opaque(etag)
    return any(_opaque(candidate) == current for candidate in if_none_match.split(",") if candidate.strip())


class CacheNegotiator:
    """
    Args:
        max_age: Cache-Control max-age; 0 sends no-cache.
        etag: Emit and honor ETags.
        weak_etag: Prefix tags with W/.
        hash_content: Derive tags from a content hash.
    """

    def __init__(self, max_age: int = 3600, etag: bool = True, weak_etag: bool = False, hash_content: bool = False):
        self.max_age = max_age
        self.etag = etag
        self.weak_etag = weak_etag
        self.hash_content = hash_content

    @property
    def cache_control(self) -> str:
        return f"max-age={self.max_age}" if self.max_age > 0 else "no-cache"

    def compute_etag(self, entity: RegularFile) -> str:
        if self.hash_content:
            digest = hashlib.sha256()
            with open(entity.path, "rb") as f:
                for chunk in iter(lambda: f.read(65536), b""):
                    digest.update(chunk)
            tag = digest.hexdigest()[:32]
        else:
            path_crc = zlib.crc32(entity.relpath.encode("utf-8"))
            mtime_ns = entity.mtime_ns or int(entity.mtime * 1_000_000_000)
            tag = f"{path_crc:08x}-{mtime_ns:x}-{entity.size:x}"
        return f'W/"{tag}"' if self.weak_etag else f'"{tag}"'

    def validators(self, entity: RegularFile) -> CacheValidators:
        return CacheValidators(
            etag=self.compute_etag(entity) if self.etag else None,
            last_modified=format_http_date(entity.mtime),
        )

    def negotiate(self, entity: RegularFile, request_headers: Mapping[str, str]) -> CacheDecision:
        """
        Decide whether the client's copy of `entity` is still fresh.

        Args:
            entity: The file about to be served.
            request_headers: Request headers with lowercase names.

        Returns:
            NotModified or Serve, each carrying the validator headers.
        """
        validators = self.validators(entity)

        headers = {}
        if validators.etag is not None:
            headers["ETag"] = validators.etag
        headers["Last-Modified"] = validators.last_modified
        headers["Cache-Control"] = self.cache_control

        if self._is_fresh(entity, validators, request_headers):
            return NotModified(headers)
        return Serve(headers)

    def _is_fresh(self, entity: RegularFile, validators: CacheValidators, request_headers: Mapping[str, str]) -> bool:
        if_none_match = request_headers.get("if-none-match")
        if if_none_match is not None and validators.etag is not None:
            return etag_matches(if_none_match, validators.etag)

        since = self._parse_date(request_headers.get("if-modified-since", ""))
        if since is None:
            return False
        return int(entity.mtime) <= since

    @staticmethod
    def _parse_date(value: str) -> Optional[float]:
        if not value:
            return None
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if parsed is None:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
