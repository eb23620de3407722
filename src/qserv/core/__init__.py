"""
Transport layer: listening socket, client connections, worker pool.
"""

from .socket_server import SocketServer, create_ssl_context
from .connection import Connection, ConnectionState, RequestTooLarge
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "create_ssl_context",
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
    "ThreadPool",
]
