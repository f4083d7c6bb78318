"""
Unit tests for connection error handling.
"""

import socket

import pytest

from tcpmessenger.core.connection import Connection
from tcpmessenger.errors import ConnectionIOError
from tcpmessenger.relay.lifecycle import LifecycleHandler
from tcpmessenger.relay.registry import ConnectionRegistry


class IdleWorker:
    def __init__(self, connection, on_failure=None):
        self.stopped = False

    def start(self):
        pass

    def stop(self):
        self.stopped = True

    def submit(self, text):
        return not self.stopped


@pytest.fixture
def pair():
    sockets = []

    def _pair(port=40000):
        a, b = socket.socketpair()
        sockets.extend([a, b])
        return Connection(socket=a, address=("127.0.0.1", port))

    yield _pair

    for sock in sockets:
        sock.close()


@pytest.fixture
def registry():
    return ConnectionRegistry(worker_factory=IdleWorker)


class TestLifecycleHandler:
    """Tests for LifecycleHandler."""

    def test_error_closes_and_removes(self, registry, pair):
        """Test a failure closes the connection and frees its name."""
        handler = LifecycleHandler(registry)
        conn = pair()
        handler.track(conn)
        registry.register(conn, "alice")

        handler.handle_error(conn, ConnectionIOError("connection closed by peer"))

        assert conn.is_closed
        assert conn not in registry
        assert "alice" not in registry.names()
        assert handler.open_connections() == []

    def test_error_is_idempotent(self, registry, pair):
        """Test the reader and the worker may both report the same connection."""
        handler = LifecycleHandler(registry)
        conn = pair()
        handler.track(conn)
        registry.register(conn)

        handler.handle_error(conn, ConnectionIOError("read failed"))
        handler.handle_error(conn, ConnectionIOError("write failed"))

        assert conn not in registry
        assert len(registry) == 0

    def test_other_connections_untouched(self, registry, pair):
        """Test one failure leaves every other connection registered."""
        handler = LifecycleHandler(registry)
        broken, healthy = pair(40001), pair(40002)
        for conn in (broken, healthy):
            handler.track(conn)
            registry.register(conn)

        handler.handle_error(broken, ConnectionIOError("reset"))

        assert healthy in registry
        assert not healthy.is_closed
        assert handler.open_connections() == [healthy]

    def test_unregistered_connection(self, registry, pair):
        """Test a producer, never registered, is still closed and forgotten."""
        handler = LifecycleHandler(registry)
        conn = pair()
        handler.track(conn)

        handler.handle_error(conn, ConnectionIOError("eof"))

        assert conn.is_closed
        assert handler.open_connections() == []

    def test_close_all(self, registry, pair):
        """Test shutdown closes tracked connections and reports the count."""
        handler = LifecycleHandler(registry)
        conns = [pair(40000 + i) for i in range(3)]
        for conn in conns:
            handler.track(conn)
        registry.register(conns[0])
        conns[2].close()

        assert handler.close_all() == 2
        assert all(conn.is_closed for conn in conns)
        assert len(registry) == 0
        assert handler.open_connections() == []
