"""
=============================================================================
LISTENING SOCKET
=============================================================================

Owns the listening socket: bind, listen, accept, and hand every accepted
connection to a callback.

    start(handler)
        │
        ├── socket() + SO_REUSEADDR + TCP_NODELAY
        ├── bind((host, port)) / listen(backlog)
        ├── TLS: load cert/key into an SSLContext        (enable_https)
        ├── SIGINT / SIGTERM → shutdown()                (main thread only)
        │
        └── accept loop, 1 s timeout so shutdown() is noticed promptly
                │
                └── handler(Connection(...))

Bind and certificate errors are raised from start() before anything is
accepted, so the caller can report them and exit.

=============================================================================
TLS
=============================================================================

Accepted sockets are wrapped with do_handshake_on_connect=False: the
accept loop never blocks on a slow or hostile TLS client. The handshake
happens on the worker thread at the first read.

=============================================================================
"""

import logging
import signal
import socket
import ssl
import threading
from typing import Callable, Dict, Optional, Tuple

from .connection import Connection
from ..config import Config


logger = logging.getLogger(__name__)


def create_ssl_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """
    Server-side TLS context.

    Raises:
        OSError: A file cannot be read.
        ssl.SSLError: The certificate or key is invalid.
    """
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return context


class SocketServer:
    """
    Accept loop for a qserv configuration.

        server = SocketServer(config)
        server.start(handle_connection)   # blocks until shutdown()
    """

    def __init__(self, config: Config, backlog: int = 128, install_signals: bool = True):
        self.config = config
        self.backlog = backlog
        self.install_signals = install_signals

        self._socket: Optional[socket.socket] = None
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._running = False
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self._original_handlers: Dict[int, object] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_https(self) -> bool:
        return self._ssl_context is not None

    @property
    def address(self) -> Tuple[str, int]:
        """The bound address; the real port when configured with port 0."""
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return host, port
        return self.config.server.host, self.config.server.port

    def _create_socket(self) -> socket.socket:
        host = self.config.server.host
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def _setup_signals(self):
        if not self.install_signals or threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        for sig in (signal.SIGINT, signal.SIGTERM):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and run the accept loop until shutdown().

        Raises:
            OSError: The address cannot be bound or a TLS file is unreadable.
            ssl.SSLError: The certificate or key is invalid.
        """
        security = self.config.security
        if security.enable_https:
            self._ssl_context = create_ssl_context(security.cert_file, security.key_file)

        host, port = self.config.server.host, self.config.server.port
        self._socket = self._create_socket()
        try:
            self._socket.bind((host, port))
            self._socket.listen(self.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._running = True
        self._stopped.clear()
        self._setup_signals()

        scheme = "https" if self.is_https else "http"
        bound_host, bound_port = self.address
        logger.info(f"Listening on {scheme}://{bound_host}:{bound_port}")
        self._ready.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        performance = self.config.performance
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            if self._ssl_context is not None:
                try:
                    client_socket = self._ssl_context.wrap_socket(
                        client_socket,
                        server_side=True,
                        do_handshake_on_connect=False,
                    )
                except (OSError, ssl.SSLError) as e:
                    logger.warning(f"TLS setup failed for {client_address[0]}: {e}")
                    client_socket.close()
                    continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                timeout=performance.read_timeout,
                keep_alive_timeout=performance.keep_alive_timeout,
                max_request_size=performance.max_request_size,
            )
            connection_handler(conn)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening (used by tests and embedders)."""
        return self._ready.wait(timeout)

    def shutdown(self):
        """Stop accepting. Safe to call more than once and from any thread."""
        if self._running:
            logger.info("Stopping accept loop...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        self._ready.clear()
        self._stopped.set()
        logger.info("Listener closed")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)
