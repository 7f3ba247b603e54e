"""
=============================================================================
CORE - TCP LAYER
=============================================================================

Everything below HTTP semantics:

    SocketServer   accept loop, signals, bound address
    Connection     one client socket: head reading, lazy body, close
    ThreadPool     bounded workers, one connection per task

One worker owns one connection for its whole keep-alive life. The
adapter calls themselves run on a separate executor owned by the
DispatchServer, so a slow application cannot hold a worker past
handler_timeout.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
