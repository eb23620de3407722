"""
=============================================================================
QSERV SERVER
=============================================================================

Wires the transport to the request pipeline.

    ┌──────────────┐   Connection   ┌────────────┐   task    ┌──────────┐
    │ SocketServer │ ─────────────► │ ThreadPool │ ────────► │ worker   │
    └──────────────┘                └────────────┘           └────┬─────┘
                                                                   │
                          ┌────────────────────────────────────────┘
                          ▼
                 keep-alive loop (per connection)
                   read_request → parse → pipeline.handle → write
                   └── repeat while the client keeps the connection
                       open and the server is not shutting down

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    SIGINT / SIGTERM
        │
        ├─► accept loop stops, listener closes       (no new connections)
        ├─► in-flight requests finish                 (≤ shutdown_timeout)
        │     responses now carry Connection: close
        └─► workers exit

=============================================================================
"""

import logging
import threading
import time
from typing import Optional, Tuple

from . import __version__
from .config import Config
from .core import Connection, ConnectionState, RequestTooLarge, SocketServer, ThreadPool
from .http.request import HTTPParseError, HTTPRequest, RequestParser
from .http.response import HTTPResponse
from .http.status_codes import HTTPStatus
from .pipeline import RequestPipeline


logger = logging.getLogger(__name__)


SERVER_NAME = "qserv"


class QServer:
    """
    Static file server for one validated configuration.

        server = QServer(validate_config(config))
        server.run()          # blocks until SIGINT/SIGTERM or stop()

    Args:
        config: A configuration that has passed validate_config().
        install_signals: Install SIGINT/SIGTERM handlers (ignored outside
            the main thread).
    """

    def __init__(self, config: Config, install_signals: bool = True):
        self.config = config
        performance = config.performance

        self.pipeline = RequestPipeline(config)
        self._parser = RequestParser(max_request_size=performance.max_request_size)
        self._socket_server = SocketServer(config, install_signals=install_signals)
        self._thread_pool = ThreadPool(
            min_workers=performance.min_workers,
            max_workers=performance.max_workers,
        )
        self._running = False
        self._stopped = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    def run(self):
        """
        Serve until stopped.

        Raises:
            OSError: The address cannot be bound or TLS files are unreadable.
            ssl.SSLError: The TLS certificate or key is invalid.
        """
        self._stopped.clear()
        self._running = True
        self._thread_pool.start()
        self._log_startup()

        try:
            self._socket_server.start(self._handle_connection)
        finally:
            self._shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """Ask the server to shut down; optionally wait until it has."""
        self._socket_server.shutdown()
        if wait:
            return self._stopped.wait(timeout)
        return True

    def _log_startup(self):
        features = self.config.features
        performance = self.config.performance
        logger.info(f"qserv {__version__} serving {self.config.server.root_dir}")
        logger.info(
            f"Workers {performance.min_workers}-{performance.max_workers}, "
            f"compression {'on' if performance.compression else 'off'}, "
            f"rate limit {'on' if performance.rate_limit.enabled else 'off'}"
        )
        logger.debug(
            f"Listing {features.directory_listing}, SPA {features.spa.enabled}, "
            f"CORS {features.cors.enabled}"
        )

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        self._thread_pool.shutdown(timeout=self.config.performance.shutdown_timeout)
        self._stopped.set()
        logger.info("Server stopped")

    # ─── Connections ───────────────────────────────────────────────────────

    def _handle_connection(self, conn: Connection):
        """Hand a new connection to the pool, or answer 503 if it is full."""
        try:
            submitted = self._thread_pool.submit(self._process_connection, args=(conn,))
        except RuntimeError:
            submitted = False
        if not submitted:
            logger.warning(f"[{conn.id}] Worker pool full, rejecting {conn.client_ip}")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, {"Retry-After": "1"})
            conn.close()

    def _process_connection(self, conn: Connection):
        """Serve one connection on a worker; it is always closed afterwards."""
        with conn:
            try:
                self._serve_requests(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection error from {conn.client_ip}: {e}")

    def _serve_requests(self, conn: Connection):
        """Keep-alive loop: read, parse, handle, repeat."""
        while self._running:
            try:
                raw_request = conn.read_request()
            except TimeoutError:
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                break
            except RequestTooLarge as e:
                logger.info(f"[{conn.id}] {e}")
                self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE)
                break

            if raw_request is None:
                break

            try:
                request = self._parser.parse(raw_request, conn.address)
            except HTTPParseError as e:
                logger.info(f"[{conn.id}] Bad request from {conn.client_ip}: {e}")
                self._send_error(conn, HTTPStatus(e.status_code))
                break

            conn.state = ConnectionState.PROCESSING
            keep_alive = self._keep_alive(request)

            def write(response: HTTPResponse) -> Tuple[bool, int]:
                self._set_connection_headers(response, keep_alive)
                return self._write(conn, response)

            completed = self.pipeline.handle(request, write)
            if not completed or not keep_alive or not self._running:
                break
            conn.set_keep_alive()

    def _keep_alive(self, request: HTTPRequest) -> bool:
        return self.config.performance.keep_alive and request.is_keep_alive and self._running

    def _set_connection_headers(self, response: HTTPResponse, keep_alive: bool):
        if keep_alive and self._running:
            response.headers["Connection"] = "keep-alive"
            response.headers["Keep-Alive"] = f"timeout={int(self.config.performance.keep_alive_timeout)}"
        else:
            response.headers["Connection"] = "close"

    @staticmethod
    def _write(conn: Connection, response: HTTPResponse) -> Tuple[bool, int]:
        """Send a response; the body stream is consumed and closed."""
        try:
            if response.stream is None:
                ok = conn.send_response(response.to_bytes(SERVER_NAME))
                return ok, len(response.body) if ok else 0
            if not conn.send_response(response.head_bytes(SERVER_NAME)):
                return False, 0
            return conn.send_chunks(response.stream, chunked=response.is_chunked)
        finally:
            response.close()

    def _send_error(self, conn: Connection, status: HTTPStatus, headers: Optional[dict] = None):
        """Error response for failures before a request could be parsed."""
        started = time.perf_counter()
        response = self.pipeline.error_response(status, headers)
        response.headers["Connection"] = "close"
        sent = conn.send_response(response.to_bytes(SERVER_NAME))
        self.pipeline.access_logger.log_unparsed(
            conn.client_ip,
            response.status,
            len(response.body) if sent else 0,
            (time.perf_counter() - started) * 1000,
        )
