"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

One nested, immutable configuration record consumed by every stage.

=============================================================================
LIFECYCLE
=============================================================================

    ┌──────────────────┐
    │ default_config() │   or load_config("qserv.json")
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ apply_env()      │   QSERV_HOST / QSERV_PORT / QSERV_DIR / QSERV_LOG_LEVEL
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ CLI overrides    │   -port, -host, -dir, -list (see __main__.py)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ validate_config()│   all violations at once → ConfigError
    └────────┬─────────┘   or a normalized copy with defaults filled in
             ▼
       read-only for the lifetime of the server, shared by every worker

Every section is a frozen dataclass: nothing downstream can mutate the
configuration by accident, and "changing" it means building a new one
with dataclasses.replace().

=============================================================================
FILE FORMAT
=============================================================================

JSON with snake_case keys mirroring the dataclass fields. Sections and
keys may be omitted; missing values keep their defaults. Unknown keys
are ignored so older files keep loading.

    {
      "server":   {"host": "0.0.0.0", "port": 8080, "root_dir": "./public"},
      "security": {"basic_auth": {"enabled": true, "username": "admin",
                                  "password": "s3cret"}},
      "features": {"spa": {"enabled": true},
                   "custom_error_pages": {"404": "./errors/404.html"}}
    }

=============================================================================
"""

import dataclasses
import ipaddress
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple


LOG_LEVELS = ("debug", "info", "warn", "error")


class ConfigError(ValueError):
    """
    Raised when configuration cannot be loaded or fails validation.

    Attributes:
        violations: Every problem found, one human-readable line each.
    """

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


# ─────────────────────────────────────────────────────────────────────────────
# SECTIONS
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    """Bind address. "0.0.0.0" listens on every interface."""

    port: int = 8080

    root_dir: str = "."
    """Directory served at "/". Must exist and be a directory."""


@dataclass(frozen=True)
class BasicAuthSettings:
    enabled: bool = False
    username: str = ""
    password: str = ""
    realm: str = "Restricted"


def _default_security_headers() -> Dict[str, str]:
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }


@dataclass(frozen=True)
class SecuritySettings:
    enable_https: bool = False
    cert_file: str = ""
    key_file: str = ""
    basic_auth: Optional[BasicAuthSettings] = None
    allowed_ips: Tuple[str, ...] = ()
    """IPs or CIDR networks. Empty means everyone not denied."""

    denied_ips: Tuple[str, ...] = ()
    """IPs or CIDR networks. Checked first: deny always wins."""

    trust_proxy: bool = False
    """Identify clients by X-Forwarded-For (only behind a trusted proxy)."""

    headers: Dict[str, str] = field(default_factory=_default_security_headers)
    """Added to every response, error pages included."""

    hsts_max_age: int = 31536000
    """Strict-Transport-Security max-age when HTTPS is on (0 disables)."""


@dataclass(frozen=True)
class RateLimitSettings:
    enabled: bool = False
    requests_per_second: float = 10.0
    burst: int = 20
    bucket_ttl: float = 300.0
    """Seconds a client bucket may sit idle before it is evicted."""


@dataclass(frozen=True)
class PerformanceSettings:
    compression: bool = True
    compression_level: int = 6
    min_compress_size: int = 1024
    stream_threshold: int = 1024 * 1024
    """Files above this size are streamed in chunks instead of read whole."""

    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)

    min_workers: int = 4
    max_workers: int = 16
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    read_timeout: float = 30.0
    max_request_size: int = 1024 * 1024
    shutdown_timeout: float = 30.0
    """How long in-flight requests get to finish after SIGINT/SIGTERM."""


@dataclass(frozen=True)
class SPASettings:
    enabled: bool = False
    fallback_file: str = "index.html"
    """Relative to the root directory."""


@dataclass(frozen=True)
class CORSSettings:
    enabled: bool = False
    allowed_origins: Tuple[str, ...] = ("*",)
    allowed_methods: Tuple[str, ...] = ("GET", "HEAD", "OPTIONS")
    allowed_headers: Tuple[str, ...] = ("Content-Type", "Authorization")
    max_age: int = 86400


@dataclass(frozen=True)
class CacheSettings:
    max_age: int = 3600
    etag: bool = True
    weak_etag: bool = False
    hash_content: bool = False
    """Derive the ETag from a SHA-256 of the content instead of size+mtime."""


@dataclass(frozen=True)
class FeatureSettings:
    directory_listing: bool = False
    index_file: str = "index.html"
    spa: SPASettings = field(default_factory=SPASettings)
    cors: CORSSettings = field(default_factory=CORSSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    custom_error_pages: Dict[int, str] = field(default_factory=dict)
    """Status code → path of the page served for it."""


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "info"
    format: str = "text"
    """Access line format: "text" (Apache-like) or "json"."""

    file: Optional[str] = None
    access_log: bool = True
    color: bool = True


@dataclass(frozen=True)
class Config:
    """
    Complete server configuration.

    Build one with default_config() or load_config(), then pass it
    through validate_config() before handing it to the server.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    performance: PerformanceSettings = field(default_factory=PerformanceSettings)
    features: FeatureSettings = field(default_factory=FeatureSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict (tuples become lists, status codes become strings)."""
        data = dataclasses.asdict(self)
        data["features"]["custom_error_pages"] = {
            str(code): path for code, path in self.features.custom_error_pages.items()
        }
        return json.loads(json.dumps(data))


def default_config() -> Config:
    """The configuration used when no file is given."""
    return Config()


# ─────────────────────────────────────────────────────────────────────────────
# LOADING & SAVING
# ─────────────────────────────────────────────────────────────────────────────

def load_config(path: str) -> Config:
    """
    Load a JSON configuration file on top of the defaults.

    Args:
        path: File to read.

    Returns:
        The (not yet validated) configuration.

    Raises:
        ConfigError: The file is unreadable, is not JSON, or has values of
                     the wrong type.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError([f"cannot read config file {path}: {e.strerror or e}"])
    except json.JSONDecodeError as e:
        raise ConfigError([f"invalid JSON in {path}: {e}"])

    if not isinstance(data, dict):
        raise ConfigError([f"{path}: top level must be a JSON object"])

    return config_from_dict(data)


def save_config(path: str, config: Config) -> None:
    """Write a configuration as indented JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
        f.write("\n")


def config_from_dict(data: Mapping[str, Any]) -> Config:
    """
    Build a Config from a parsed JSON object.

    Raises:
        ConfigError: Listing every field with a value of the wrong type.
    """
    errors: List[str] = []
    config = _build(Config, data, "", errors)
    if errors:
        raise ConfigError(errors)
    return config


def _build(cls, data: Any, prefix: str, errors: List[str]):
    if not isinstance(data, Mapping):
        errors.append(f"{prefix.rstrip('.') or 'config'}: expected an object")
        return cls()

    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        name = prefix + f.name
        factory = f.default_factory

        if f.name == "basic_auth":
            kwargs[f.name] = None if value is None else _build(BasicAuthSettings, value, name + ".", errors)
        elif factory is not dataclasses.MISSING and dataclasses.is_dataclass(factory):
            kwargs[f.name] = _build(factory, value, name + ".", errors)
        elif f.name == "custom_error_pages":
            kwargs[f.name] = _error_pages(value, name, errors)
        elif f.name == "headers":
            if isinstance(value, Mapping) and all(isinstance(v, str) for v in value.values()):
                kwargs[f.name] = {str(k): v for k, v in value.items()}
            else:
                errors.append(f"{name}: expected an object of strings")
        else:
            coerced = _coerce(value, f.default, name, errors)
            if coerced is not None or f.default is None:
                kwargs[f.name] = coerced

    return cls(**kwargs)


def _coerce(value: Any, default: Any, name: str, errors: List[str]) -> Any:
    """Check a scalar/list value against the type of its default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(default, tuple):
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return tuple(value)
    elif default is None:
        if value is None or isinstance(value, str):
            return value
    elif isinstance(value, str):
        return value

    errors.append(f"{name}: invalid value {value!r}")
    return None


def _error_pages(value: Any, name: str, errors: List[str]) -> Dict[int, str]:
    pages: Dict[int, str] = {}
    if not isinstance(value, Mapping):
        errors.append(f"{name}: expected an object")
        return pages
    for code, path in value.items():
        try:
            status = int(code)
        except (TypeError, ValueError):
            errors.append(f"{name}: invalid status code {code!r}")
            continue
        if not isinstance(path, str):
            errors.append(f"{name}.{code}: expected a file path")
            continue
        pages[status] = path
    return pages


# ─────────────────────────────────────────────────────────────────────────────
# OVERRIDES
# ─────────────────────────────────────────────────────────────────────────────

def apply_env(config: Config, environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Apply QSERV_* environment variables.

        QSERV_HOST       server.host
        QSERV_PORT       server.port
        QSERV_DIR        server.root_dir
        QSERV_LOG_LEVEL  logging.level

    Raises:
        ConfigError: QSERV_PORT is not an integer.
    """
    environ = os.environ if environ is None else environ

    server = config.server
    if environ.get("QSERV_HOST"):
        server = dataclasses.replace(server, host=environ["QSERV_HOST"])
    if environ.get("QSERV_PORT"):
        try:
            server = dataclasses.replace(server, port=int(environ["QSERV_PORT"]))
        except ValueError:
            raise ConfigError([f"QSERV_PORT: not an integer: {environ['QSERV_PORT']!r}"])
    if environ.get("QSERV_DIR"):
        server = dataclasses.replace(server, root_dir=environ["QSERV_DIR"])

    logging_settings = config.logging
    if environ.get("QSERV_LOG_LEVEL"):
        logging_settings = dataclasses.replace(logging_settings, level=environ["QSERV_LOG_LEVEL"].lower())

    return dataclasses.replace(config, server=server, logging=logging_settings)


def with_overrides(
    config: Config,
    host: Optional[str] = None,
    port: Optional[int] = None,
    root_dir: Optional[str] = None,
    directory_listing: Optional[bool] = None,
    log_level: Optional[str] = None,
    workers: Optional[int] = None,
) -> Config:
    """Return a copy with command-line overrides applied (None = keep)."""
    server = config.server
    if host:
        server = dataclasses.replace(server, host=host)
    if port:
        server = dataclasses.replace(server, port=port)
    if root_dir:
        server = dataclasses.replace(server, root_dir=root_dir)

    features = config.features
    if directory_listing:
        features = dataclasses.replace(features, directory_listing=True)

    performance = config.performance
    if workers:
        performance = dataclasses.replace(performance, min_workers=workers, max_workers=workers * 2)

    logging_settings = config.logging
    if log_level:
        logging_settings = dataclasses.replace(logging_settings, level=log_level.lower())

    return dataclasses.replace(
        config,
        server=server,
        features=features,
        performance=performance,
        logging=logging_settings,
    )


# ─────────────────────────────────────────────────────────────────────────────
# VALIDATION
# ─────────────────────────────────────────────────────────────────────────────

def validate_config(config: Config) -> Config:
    """
    Validate a configuration in one pass.

    Hard errors are collected, not raised one at a time, so the user
    sees everything wrong with a file at once. Soft problems are fixed
    up in the returned copy instead:

    - basic auth realm empty          → "Restricted"
    - compression level outside 1-9   → 6
    - unknown log level               → "info"

    Args:
        config: Configuration to check.

    Returns:
        A normalized copy of `config`.

    Raises:
        ConfigError: With every violation found.
    """
    violations: List[str] = []

    # ─── server ───
    if not 1 <= config.server.port <= 65535:
        violations.append(f"invalid port: {config.server.port} (must be between 1-65535)")

    root = Path(config.server.root_dir)
    if not root.exists():
        violations.append(f"root directory does not exist: {config.server.root_dir}")
    elif not root.is_dir():
        violations.append(f"root path is not a directory: {config.server.root_dir}")

    # ─── security ───
    security = config.security
    if security.enable_https:
        if not security.cert_file or not security.key_file:
            violations.append("HTTPS enabled but cert_file or key_file not specified")
        else:
            for label, path in (("certificate", security.cert_file), ("key", security.key_file)):
                if not os.path.isfile(path):
                    violations.append(f"{label} file not found: {path}")
                elif not os.access(path, os.R_OK):
                    violations.append(f"{label} file not readable: {path}")

    basic_auth = security.basic_auth
    if basic_auth is not None and basic_auth.enabled:
        if not basic_auth.username or not basic_auth.password:
            violations.append("basic auth enabled but username or password not specified")
        if not basic_auth.realm:
            basic_auth = dataclasses.replace(basic_auth, realm="Restricted")

    for list_name in ("allowed_ips", "denied_ips"):
        for entry in getattr(security, list_name):
            try:
                ipaddress.ip_network(entry, strict=False)
            except ValueError:
                violations.append(f"security.{list_name}: not an IP or CIDR network: {entry!r}")

    if security.hsts_max_age < 0:
        violations.append("security.hsts_max_age must be >= 0")

    # ─── performance ───
    performance = config.performance
    if not 1 <= performance.compression_level <= 9:
        performance = dataclasses.replace(performance, compression_level=6)

    rate_limit = performance.rate_limit
    if rate_limit.enabled:
        if rate_limit.requests_per_second <= 0:
            violations.append("performance.rate_limit.requests_per_second must be > 0")
        if rate_limit.burst < 1:
            violations.append("performance.rate_limit.burst must be >= 1")

    if performance.min_workers < 1:
        violations.append("performance.min_workers must be >= 1")
    if performance.max_workers < performance.min_workers:
        violations.append("performance.max_workers must be >= min_workers")
    if performance.max_request_size < 1024:
        violations.append("performance.max_request_size must be >= 1024")
    for name in ("keep_alive_timeout", "read_timeout", "shutdown_timeout"):
        if getattr(performance, name) <= 0:
            violations.append(f"performance.{name} must be > 0")

    # ─── features ───
    features = config.features
    if features.spa.enabled and not features.spa.fallback_file:
        violations.append("SPA mode enabled but fallback_file not specified")
    if not features.index_file or "/" in features.index_file:
        violations.append(f"features.index_file must be a plain file name: {features.index_file!r}")
    if features.cache.max_age < 0:
        violations.append("features.cache.max_age must be >= 0")
    for code in features.custom_error_pages:
        if not 400 <= code <= 599:
            violations.append(f"features.custom_error_pages: {code} is not an error status")

    if violations:
        raise ConfigError(violations)

    # ─── logging ───
    logging_settings = config.logging
    if logging_settings.level not in LOG_LEVELS:
        logging_settings = dataclasses.replace(logging_settings, level="info")
    if logging_settings.format not in ("text", "json"):
        logging_settings = dataclasses.replace(logging_settings, format="text")

    return dataclasses.replace(
        config,
        security=dataclasses.replace(security, basic_auth=basic_auth),
        performance=performance,
        logging=logging_settings,
    )
