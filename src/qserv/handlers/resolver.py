"""
=============================================================================
PATH RESOLUTION
=============================================================================

Maps a decoded URL path to what the filesystem holds under the root.

    ┌────────────────────────────────────────────────────────────────────┐
    │ "/docs/../../etc/passwd"  ──► Forbidden   (".." segment)           │
    │ "/link-to-etc/passwd"     ──► Forbidden   (symlink leaves root)    │
    │ "/app.js"                 ──► RegularFile(path, size, mtime)       │
    │ "/docs/"   + index.html   ──► RegularFile(docs/index.html)         │
    │ "/docs/"   no index       ──► Directory   (listing enabled)        │
    │                           ──► NotFound    (listing disabled)       │
    │ "/users/42" nothing there ──► RegularFile(index.html) (SPA mode)   │
    │                           ──► NotFound    (SPA off)                │
    └────────────────────────────────────────────────────────────────────┘

=============================================================================
PATH TRAVERSAL
=============================================================================

Two independent checks guard the root:

1. Lexical: any ".." segment (with "/" or "\\" as separator) is refused
   before the filesystem is touched, whatever else is configured.

2. Real path: the joined path is resolved (following symlinks) and must
   still lie inside the resolved root. This catches links that point
   outside, and applies equally to index files and the SPA fallback.

=============================================================================
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegularFile:
    """A servable file. `relpath` is its POSIX path relative to the root."""

    path: Path
    size: int
    mtime: float
    relpath: str = ""
    mtime_ns: int = 0


@dataclass(frozen=True)
class Directory:
    path: Path
    listable: bool = True


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Forbidden:
    reason: str = ""


ResolvedEntity = Union[RegularFile, Directory, NotFound, Forbidden]


def has_traversal(url_path: str) -> bool:
    """True if `url_path` contains a ".." segment or a NUL byte."""
    if "\x00" in url_path:
        return True
    return ".." in url_path.replace("\\", "/").split("/")


class PathResolver:
    """
    Resolves URL paths against a root directory.

    Args:
        root_dir: Directory being served.
        index_file: File served for a directory request.
        directory_listing: List directories that have no index file.
        spa_enabled: Serve `spa_fallback` for paths that match nothing.
        spa_fallback: Fallback file, relative to the root.
    """

    def __init__(
        self,
        root_dir: str,
        index_file: str = "index.html",
        directory_listing: bool = False,
        spa_enabled: bool = False,
        spa_fallback: str = "index.html",
    ):
        self.root = Path(root_dir).resolve()
        self.index_file = index_file
        self.directory_listing = directory_listing
        self.spa_enabled = spa_enabled
        self.spa_fallback = spa_fallback

    def resolve(self, url_path: str) -> ResolvedEntity:
        if has_traversal(url_path):
            logger.warning(f"Path traversal attempt: {url_path!r}")
            return Forbidden("traversal")

        relative = "/".join(
            part for part in url_path.replace("\\", "/").split("/") if part and part != "."
        )
        real = self._real_path(self.root / relative)
        if real is None:
            return NotFound()
        if not self._contains(real):
            logger.warning(f"Path escapes root via symlink: {url_path!r}")
            return Forbidden("outside root")

        try:
            st = real.stat()
        except PermissionError:
            return Forbidden("permission denied")
        except OSError:
            return self._fallback()

        if stat.S_ISREG(st.st_mode):
            return self._regular(real, st)

        if stat.S_ISDIR(st.st_mode):
            index = self._file_within(real / self.index_file)
            if index is not None:
                return index
            if self.directory_listing:
                return Directory(real, listable=True)
            return NotFound()

        # sockets, fifos, devices
        return NotFound()

    def _fallback(self) -> ResolvedEntity:
        if not self.spa_enabled:
            return NotFound()
        entity = self._file_within(self.root / self.spa_fallback)
        return entity if entity is not None else NotFound()

    def _file_within(self, path: Path) -> Optional[ResolvedEntity]:
        """A RegularFile (or Forbidden) for `path`, None if it is not a file."""
        real = self._real_path(path)
        if real is None:
            return None
        if not self._contains(real):
            logger.warning(f"Refusing file outside root: {path.name}")
            return Forbidden("outside root")
        try:
            st = real.stat()
        except PermissionError:
            return Forbidden("permission denied")
        except OSError:
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return self._regular(real, st)

    def _regular(self, real: Path, st: os.stat_result) -> RegularFile:
        return RegularFile(
            path=real,
            size=st.st_size,
            mtime=st.st_mtime,
            relpath=real.relative_to(self.root).as_posix(),
            mtime_ns=st.st_mtime_ns,
        )

    @staticmethod
    def _real_path(path: Path) -> Optional[Path]:
        try:
            return path.resolve()
        except (OSError, RuntimeError):
            # symlink loops
            return None

    def _contains(self, real: Path) -> bool:
        try:
            real.relative_to(self.root)
        except ValueError:
            return False
        return True
