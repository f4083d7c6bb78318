"""
Connection error and lifecycle handling.

Every I/O failure, whatever thread sees it, ends up in
LifecycleHandler.handle_error(): log it, close the connection, take it out
of the registry. The handler also remembers every open connection so a
shutdown can close producer-only sockets, which the registry never sees.
"""

import threading
from typing import List, Set

from ..core.connection import Connection
from ..errors import ConnectionIOError
from ..logs import get_logger
from .registry import ConnectionRegistry


log = get_logger(__name__)


class LifecycleHandler:
    """Closes failed connections and removes them from the registry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._open: Set[Connection] = set()
        self._lock = threading.Lock()

    def track(self, conn: Connection) -> None:
        """Remember a freshly accepted connection."""
        with self._lock:
            self._open.add(conn)

    def open_connections(self) -> List[Connection]:
        with self._lock:
            return list(self._open)

    def handle_error(self, conn: Connection, error: ConnectionIOError) -> None:
        """
        Log the failure, close the connection and remove it from the registry.

        Safe to call more than once and from several threads: the reader and
        the delivery worker of a chat connection can both fail at once.
        Only the first call logs.
        """
        if conn.close():
            log.error(f"connection error: {error}", conn=conn.id, address=conn.remote_address)
        self.release(conn)

    def release(self, conn: Connection) -> None:
        """Forget a connection; removal from the registry is a no-op if absent."""
        self.registry.remove(conn)
        with self._lock:
            self._open.discard(conn)

    def close_all(self) -> int:
        """Close every tracked connection. Returns how many were still open."""
        closed = 0
        for conn in self.open_connections():
            if conn.close():
                closed += 1
            self.release(conn)
        return closed
