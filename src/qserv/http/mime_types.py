"""
=============================================================================
MIME TYPE DETECTION
=============================================================================

Maps file extensions to Content-Type values for served files.

The table below wins for the extensions browsers are picky about (a
JavaScript module served as text/plain will not execute, an SVG served
as application/octet-stream will not render). Anything not in the table
falls through to the platform `mimetypes` database, and finally to
application/octet-stream.

    index.html   ─► text/html; charset=utf-8
    app.mjs      ─► text/javascript; charset=utf-8
    logo.svg     ─► image/svg+xml
    photo.heic   ─► (mimetypes) image/heic
    blob.bin     ─► application/octet-stream

=============================================================================
"""

import mimetypes
from pathlib import Path
from typing import Optional, Union

MIME_TYPES = {
    # text
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".xml": "application/xml",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    # images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    # fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    # media
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    # archives and binaries
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tar": "application/x-tar",
    ".wasm": "application/wasm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Structured text formats that are not under text/* but still take a charset.
_TEXT_LIKE = {
    "application/json",
    "application/xml",
    "application/javascript",
    "application/manifest+json",
    "image/svg+xml",
}


def get_mime_type(path: Union[str, Path], default: Optional[str] = None) -> str:
    """
    Get the MIME type for a file from its extension.

    Args:
        path: File path or bare file name.
        default: Returned for unknown extensions instead of
                 application/octet-stream.

    Returns:
        The MIME type without parameters.
    """
    suffix = Path(path).suffix.lower()
    if suffix in MIME_TYPES:
        return MIME_TYPES[suffix]

    guessed, _ = mimetypes.guess_type(str(path), strict=False)
    return guessed or default or DEFAULT_MIME_TYPE


def is_text_type(mime_type: str) -> bool:
    """Check whether a MIME type is textual (and so should carry a charset)."""
    base = mime_type.split(";")[0].strip().lower()
    return base.startswith("text/") or base in _TEXT_LIKE


def get_content_type(path: Union[str, Path], charset: str = "utf-8") -> str:
    """
    Full Content-Type header value for a file.

        >>> get_content_type("index.html")
        'text/html; charset=utf-8'
        >>> get_content_type("logo.png")
        'image/png'
    """
    mime_type = get_mime_type(path)
    if is_text_type(mime_type) and mime_type != "image/svg+xml":
        return f"{mime_type}; charset={charset}"
    return mime_type
