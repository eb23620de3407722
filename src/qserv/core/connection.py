"""
=============================================================================
CLIENT CONNECTIONS
=============================================================================

Wraps one accepted socket (plain or TLS) with buffered request reads and
response writes.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns whatever has arrived, not one request:

    recv() → "GET /index.ht"
    recv() → "ml HTTP/1.1\\r\\nHost: a\\r\\n\\r\\nGET /app.js HTTP/1.1\\r\\n..."

So bytes are buffered until the blank line ending the headers, then
Content-Length more bytes are taken as the body. Anything past that is
kept for the next read_request() call (pipelined requests).

=============================================================================
TIMEOUTS
=============================================================================

    first request     read_timeout        (slow clients get a 408)
    keep-alive wait   keep_alive_timeout  (silence just closes)

=============================================================================
"""

import logging
import socket
import ssl
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple


logger = logging.getLogger(__name__)


class RequestTooLarge(ValueError):
    """The buffered request grew past max_request_size."""


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The accepted (possibly TLS-wrapped) socket.
        address: Peer (ip, port).
        id: Short identifier used in log lines.
        requests_handled: Requests read so far on this connection.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    # ─── Reading ───────────────────────────────────────────────────────────

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request (headers plus Content-Length body).

        Returns:
            The raw request bytes, or None when the client closed the
            connection or went quiet on a keep-alive connection.

        Raises:
            TimeoutError: The first request did not arrive in time.
            RequestTooLarge: The request exceeds max_request_size.
        """
        self.state = ConnectionState.READING
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            if self._handshake_pending():
                self.socket.do_handshake()

            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise RequestTooLarge(f"Request headers exceed {self.max_request_size} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._content_length(self._buffer[:header_end])

            if body_start + content_length > self.max_request_size:
                raise RequestTooLarge(f"Request body of {content_length} bytes is too large")

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]
            self.requests_handled += 1
            return request_data

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        except ssl.SSLError as e:
            logger.debug(f"[{self.id}] TLS error: {e}")
            return None
        finally:
            try:
                self.socket.settimeout(self.timeout)
            except OSError:
                pass

    def _handshake_pending(self) -> bool:
        # TLS sockets are wrapped with do_handshake_on_connect=False so the
        # handshake runs here, on the worker thread, not in the accept loop
        return (
            isinstance(self.socket, ssl.SSLSocket)
            and self.requests_handled == 0
            and not self._buffer
        )

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""

    @staticmethod
    def _content_length(header_section: bytes) -> int:
        """Content-Length from raw headers; malformed values are left to the parser."""
        for line in header_section.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                try:
                    return max(0, int(value.strip()))
                except ValueError:
                    return 0
        return 0

    # ─── Writing ───────────────────────────────────────────────────────────

    def send_response(self, data: bytes) -> bool:
        """
        Send bytes in full.

        Returns:
            False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def send_chunks(self, chunks: Iterable[bytes], chunked: bool = False) -> Tuple[bool, int]:
        """
        Send a body chunk by chunk, optionally with chunked framing.

        Stops at the first failed write, so nothing more is read from
        `chunks` once the client has gone.

        Returns:
            (completed, body bytes sent)
        """
        self.state = ConnectionState.WRITING
        sent = 0
        try:
            for chunk in chunks:
                if not chunk:
                    continue
                if chunked:
                    self.socket.sendall(f"{len(chunk):X}\r\n".encode("ascii") + chunk + b"\r\n")
                else:
                    self.socket.sendall(chunk)
                sent += len(chunk)
            if chunked:
                self.socket.sendall(b"0\r\n\r\n")
        except OSError as e:
            logger.info(f"[{self.id}] Client disconnected after {sent} bytes: {e}")
            return False, sent
        return True, sent

    # ─── Closing ───────────────────────────────────────────────────────────

    def close(self):
        """Shut down the write side, drain briefly, and release the socket."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except (OSError, ValueError):
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except (OSError, ValueError):
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
