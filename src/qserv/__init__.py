"""
=============================================================================
QSERV
=============================================================================

Static file server with the features a small deployment needs:

    ┌──────────────────────────────┬────────────────────────────────────┐
    │ Access                       │ Delivery                           │
    ├──────────────────────────────┼────────────────────────────────────┤
    │ IP allow/deny lists          │ ETag / Last-Modified, 304s         │
    │ HTTP Basic authentication    │ gzip (whole bodies and streams)    │
    │ Per-client rate limiting     │ directory listings                 │
    │ CORS and preflight           │ SPA fallback, custom error pages   │
    │ HTTPS                        │ security headers on every response │
    └──────────────────────────────┴────────────────────────────────────┘

Library use:

    from qserv import QServer, default_config, validate_config

    config = validate_config(default_config())
    QServer(config).run()

Command line:

    qserv -dir ./public -port 3000 -list

=============================================================================
"""

__version__ = "1.0.0"

from .config import (
    Config,
    ConfigError,
    default_config,
    load_config,
    save_config,
    validate_config,
)
from .pipeline import RequestPipeline
from .server import QServer

__all__ = [
    "Config",
    "ConfigError",
    "default_config",
    "load_config",
    "save_config",
    "validate_config",
    "RequestPipeline",
    "QServer",
    "__version__",
]
