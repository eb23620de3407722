"""
=============================================================================
REQUEST PIPELINE
=============================================================================

Owns the life of one request, from "parsed" to "logged".

    Received
       │
       ├─ RateLimiter ─────────── Terminate(429) ──┐
       ├─ AccessControl ───────── Terminate(403) ──┤
       ├─ BasicAuthenticator ──── Terminate(401) ──┤
       ├─ CORSPolicy ──────────── Terminate(204) ──┤  preflight
       │                                           │
       ├─ method check ────────── 405 / 204 ───────┤
       │                                           │
       ├─ PathResolver                             │
       │    ├─ Forbidden ──────── 403 ─────────────┤
       │    ├─ NotFound ───────── 404 ─────────────┤
       │    ├─ Directory ──────── listing          │
       │    └─ RegularFile                         │
       │         └─ CacheNegotiator ── 304 ────────┤
       │               └─ file body                │
       │                                           │
       ├─ Compressor           (2xx bodies)        │
       ├─ SecurityHeaders ◄────────────────────────┘  every response
       ├─ write
       └─ AccessLogger                                every response

Error statuses are rendered by the ErrorPresenter. 204 and 304
terminals are not: they have no body to render.

This is the only place that turns stage outcomes into status codes, so a
response is built exactly once.

=============================================================================
"""

import logging
import time
from typing import Callable, Dict, Mapping, Optional, Tuple

from .config import Config
from .handlers import (
    CacheNegotiator,
    Directory,
    ErrorPresenter,
    Forbidden,
    NotFound,
    NotModified,
    PathResolver,
    RegularFile,
    ResolvedEntity,
    StaticFileHandler,
)
from .http.request import HTTPRequest
from .http.response import HTTPResponse, ResponseBuilder
from .http.status_codes import HTTPStatus
from .middleware import (
    AccessControl,
    AccessLogger,
    BasicAuthenticator,
    CORSPolicy,
    Compressor,
    RateLimiter,
    SecurityHeaders,
    StageChain,
)


logger = logging.getLogger(__name__)


ALLOWED_METHODS = "GET, HEAD, OPTIONS"

# write(response) -> (completed, body bytes sent)
Writer = Callable[[HTTPResponse], Tuple[bool, int]]


class RequestPipeline:
    """
    The full request path for one validated configuration.

        pipeline = RequestPipeline(config)
        response = pipeline.build_response(request)      # no I/O but files
        pipeline.handle(request, write)                  # build, write, log
    """

    def __init__(self, config: Config):
        self.config = config
        security = config.security
        performance = config.performance
        features = config.features

        self.rate_limiter = RateLimiter(
            requests_per_second=performance.rate_limit.requests_per_second,
            burst=performance.rate_limit.burst,
            enabled=performance.rate_limit.enabled,
            trust_proxy=security.trust_proxy,
            bucket_ttl=performance.rate_limit.bucket_ttl,
        )
        self.access_control = AccessControl(
            allowed_ips=security.allowed_ips,
            denied_ips=security.denied_ips,
            trust_proxy=security.trust_proxy,
        )
        auth = security.basic_auth
        self.authenticator = BasicAuthenticator(
            username=auth.username if auth else "",
            password=auth.password if auth else "",
            realm=auth.realm if auth else "Restricted",
            enabled=bool(auth and auth.enabled),
        )
        self.cors = CORSPolicy(
            allowed_origins=features.cors.allowed_origins,
            allowed_methods=features.cors.allowed_methods,
            allowed_headers=features.cors.allowed_headers,
            max_age=features.cors.max_age,
            enabled=features.cors.enabled,
        )
        self.stages = StageChain().use(
            self.rate_limiter,
            self.access_control,
            self.authenticator,
            self.cors,
        )

        self.resolver = PathResolver(
            root_dir=config.server.root_dir,
            index_file=features.index_file,
            directory_listing=features.directory_listing,
            spa_enabled=features.spa.enabled,
            spa_fallback=features.spa.fallback_file,
        )
        self.cache = CacheNegotiator(
            max_age=features.cache.max_age,
            etag=features.cache.etag,
            weak_etag=features.cache.weak_etag,
            hash_content=features.cache.hash_content,
        )
        self.static = StaticFileHandler(stream_threshold=performance.stream_threshold)
        self.presenter = ErrorPresenter(features.custom_error_pages, root_dir=config.server.root_dir)

        self.compressor = Compressor(
            level=performance.compression_level,
            min_size=performance.min_compress_size,
            enabled=performance.compression,
        )
        self.security_headers = SecurityHeaders(
            headers=security.headers,
            https=security.enable_https,
            hsts_max_age=security.hsts_max_age,
        )
        self.access_logger = AccessLogger(
            log_format=config.logging.format,
            trust_proxy=security.trust_proxy,
            enabled=config.logging.access_log,
        )

    # ─── Building ──────────────────────────────────────────────────────────

    def build_response(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run every stage for `request` and return the response to send.

        Never raises: unexpected errors are logged and become a 500.
        """
        try:
            response = self._respond(request)
        except Exception as e:
            logger.exception(f"Unhandled error for {request.method} {request.path}: {e}")
            response = self.presenter.response(HTTPStatus.INTERNAL_SERVER_ERROR)
        return self._finish(request, response)

    def _respond(self, request: HTTPRequest) -> HTTPResponse:
        terminated, headers = self.stages.run(request)
        if terminated is not None:
            return self._terminal(terminated.status, headers)

        if request.method == "OPTIONS":
            headers["Allow"] = ALLOWED_METHODS
            return ResponseBuilder().status(HTTPStatus.NO_CONTENT).headers(headers).build()

        if request.method not in ("GET", "HEAD"):
            headers["Allow"] = ALLOWED_METHODS
            return self._terminal(HTTPStatus.METHOD_NOT_ALLOWED, headers)

        entity = self.resolver.resolve(request.path)
        return self._entity_response(request, entity, headers)

    def _terminal(self, status: HTTPStatus, headers: Mapping[str, str]) -> HTTPResponse:
        if status.is_error:
            return self.presenter.response(status, headers)
        return ResponseBuilder().status(status).headers(dict(headers)).build()

    def _entity_response(self, request: HTTPRequest, entity: ResolvedEntity, headers: Dict[str, str]) -> HTTPResponse:
        if isinstance(entity, Forbidden):
            return self._terminal(HTTPStatus.FORBIDDEN, headers)

        if isinstance(entity, NotFound):
            return self._terminal(HTTPStatus.NOT_FOUND, headers)

        try:
            if isinstance(entity, Directory):
                response = self.static.listing_response(entity, request.path)
                response.headers.update(headers)
                return response

            if isinstance(entity, RegularFile):
                decision = self.cache.negotiate(entity, request.headers)
                if isinstance(decision, NotModified):
                    return (ResponseBuilder()
                        .status(HTTPStatus.NOT_MODIFIED)
                        .headers(headers)
                        .headers(decision.headers)
                        .build())
                return self.static.file_response(entity, {**headers, **decision.headers})
        except OSError as e:
            # stat already succeeded, so this is a 500 even for PermissionError
            logger.error(f"I/O error serving {request.path}: {e}")
            return self._terminal(HTTPStatus.INTERNAL_SERVER_ERROR, headers)

        raise TypeError(f"Unknown entity {entity!r}")

    def _finish(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        """Response-side steps shared by every outcome."""
        if response.status.is_success:
            try:
                self.compressor.apply(request, response)
            except Exception as e:
                logger.exception(f"Compression failed for {request.path}: {e}")
                response.close()
                response = self.presenter.response(HTTPStatus.INTERNAL_SERVER_ERROR)
        self.security_headers.apply(response)
        if request.method == "HEAD":
            response.drop_body()
        return response

    def error_response(self, status: HTTPStatus, headers: Optional[Mapping[str, str]] = None) -> HTTPResponse:
        """An error page for failures outside a parsed request (400, 408, 503...)."""
        return self.security_headers.apply(self.presenter.response(status, headers))

    # ─── Delivering ────────────────────────────────────────────────────────

    def handle(self, request: HTTPRequest, write: Writer) -> bool:
        """
        Build, write and log one response.

        Args:
            request: The parsed request.
            write: Sends the response; returns (completed, body bytes sent).

        Returns:
            True if the whole response reached the client.
        """
        started = time.perf_counter()
        response = self.build_response(request)
        completed, sent = False, 0
        try:
            completed, sent = write(response)
        finally:
            response.close()
            duration_ms = (time.perf_counter() - started) * 1000
            self.access_logger.log(request, response.status, sent, duration_ms)
        return completed
