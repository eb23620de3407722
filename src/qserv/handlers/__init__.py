"""
Handlers: everything between "the request is allowed" and "here are the
bytes".

    PathResolver       URL path → RegularFile / Directory / NotFound / Forbidden
    CacheNegotiator    validators, 304 decisions
    StaticFileHandler  file bodies (whole or streamed), directory listings
    ErrorPresenter     custom and built-in error pages
"""

from .resolver import (
    PathResolver,
    ResolvedEntity,
    RegularFile,
    Directory,
    NotFound,
    Forbidden,
)
from .cache import CacheNegotiator, CacheValidators, NotModified, Serve
from .static import StaticFileHandler, FileStream
from .errors import ErrorPresenter

__all__ = [
    "PathResolver",
    "ResolvedEntity",
    "RegularFile",
    "Directory",
    "NotFound",
    "Forbidden",
    "CacheNegotiator",
    "CacheValidators",
    "NotModified",
    "Serve",
    "StaticFileHandler",
    "FileStream",
    "ErrorPresenter",
]
