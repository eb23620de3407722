"""
=============================================================================
STATIC FILE RESPONSES
=============================================================================

Turns a resolved entity into a response body.

    ┌────────────────────────────────────────────────────────────────────┐
    │ RegularFile, size <= stream_threshold                              │
    │     read whole, bytes body, Content-Length                         │
    │                                                                    │
    │ RegularFile, size >  stream_threshold                              │
    │     FileStream: 64 KiB chunks read as the socket drains            │
    │                                                                    │
    │ Directory(listable)                                                │
    │     generated HTML index, Cache-Control: no-cache                  │
    └────────────────────────────────────────────────────────────────────┘

=============================================================================
STREAMING AND DISCONNECTS
=============================================================================

The file is opened before the response is handed back, so a read error
still becomes a proper 500 instead of a truncated body. From then on
the open handle belongs to the FileStream; whoever writes the response
calls close() when it is done or when the client goes away, and the
handle is released at once. Nothing reads ahead of the socket.

=============================================================================
"""

import html
import logging
import os
from pathlib import Path
from typing import BinaryIO, Dict, Optional
from urllib.parse import quote

from .resolver import Directory, RegularFile
from ..http.mime_types import get_content_type
from ..http.response import HTTPResponse, ResponseBuilder


logger = logging.getLogger(__name__)


DEFAULT_CHUNK_SIZE = 64 * 1024


class FileStream:
    """Iterator over an open file's chunks that owns the file handle."""

    def __init__(self, handle: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._handle = handle
        self.chunk_size = chunk_size

    def __iter__(self) -> "FileStream":
        return self

    def __next__(self) -> bytes:
        if self._handle.closed:
            raise StopIteration
        chunk = self._handle.read(self.chunk_size)
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def close(self) -> None:
        self._handle.close()


class StaticFileHandler:
    """
    Builds 200 responses for files and directory listings.

    Args:
        stream_threshold: Files larger than this many bytes are streamed.
        chunk_size: Read size for streamed files.
    """

    def __init__(self, stream_threshold: int = 1024 * 1024, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.stream_threshold = stream_threshold
        self.chunk_size = chunk_size

    def file_response(self, entity: RegularFile, headers: Optional[Dict[str, str]] = None) -> HTTPResponse:
        """
        Response for a regular file.

        Raises:
            OSError: The file could not be opened or read.
        """
        builder = (ResponseBuilder()
            .content_type(get_content_type(entity.path))
            .headers(headers or {}))

        if entity.size > self.stream_threshold:
            handle = open(entity.path, "rb")
            logger.debug(f"Streaming {entity.relpath} ({entity.size} bytes)")
            return builder.stream(FileStream(handle, self.chunk_size), length=entity.size).build()

        with open(entity.path, "rb") as f:
            content = f.read()
        return builder.body(content).build()

    def listing_response(self, entity: Directory, url_path: str) -> HTTPResponse:
        """
        HTML index of a directory.

        Raises:
            OSError: The directory could not be read.
        """
        return (ResponseBuilder()
            .html(render_listing(entity.path, url_path))
            .no_cache()
            .build())


def render_listing(directory: Path, url_path: str) -> str:
    """
    Render the children of `directory` as an HTML page.

    Directories come first, then files, each sorted by name and each
    listed once. A parent link is included below the root.
    """
    base = url_path.rstrip("/") + "/"

    with os.scandir(directory) as it:
        children = [(entry.is_dir(), entry.name) for entry in it]
    children.sort(key=lambda child: (not child[0], child[1].lower(), child[1]))

    items = []
    if base != "/":
        parent = base.rstrip("/").rsplit("/", 1)[0] + "/"
        items.append(f'<li><a href="{quote(parent)}">../</a></li>')

    for is_dir, name in children:
        label = name + "/" if is_dir else name
        href = quote(base + label)
        items.append(f'<li><a href="{href}">{html.escape(label)}</a></li>')

    title = html.escape(f"Index of {base}")
    entries = "\n        ".join(items)
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
        body {{ font-family: monospace; padding: 20px; }}
        h1 {{ border-bottom: 1px solid #ccc; padding-bottom: 10px; }}
        ul {{ list-style: none; padding: 0; }}
        li {{ padding: 5px 0; }}
        a {{ text-decoration: none; color: #0066cc; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <ul>
        {entries}
    </ul>
</body>
</html>
"""
