"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

Transport-level building blocks with no knowledge of roles or messages:

    SocketServer     binds, listens, accepts; wraps each client in a Connection
    Connection       buffered line reads, atomic writes, idempotent close
    DeliveryWorker   one writer thread per receiving connection

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .delivery import DeliveryWorker, WorkerState

__all__ = [
    "SocketServer",     # Accept loop
    "Connection",       # Client socket wrapper
    "ConnectionState",  # Connection lifecycle states
    "DeliveryWorker",   # Ordered, non-blocking writes to one connection
    "WorkerState",      # Delivery worker states
]
