"""
pytest configuration and fixtures.
"""

import select
import socket
import threading
import time
from typing import Callable, Generator, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tcpmessenger import Messenger, MessengerConfig
from tcpmessenger.core.connection import Connection


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class LineClient:
    """Minimal line-protocol client used to drive a running messenger."""

    def __init__(self, address: Tuple[str, int], timeout: float = 3.0):
        self.sock = socket.create_connection(address, timeout=timeout)
        self._buffer = b""

    def send(self, text: str):
        self.sock.sendall(text.encode("utf-8"))

    def read_raw_line(self) -> bytes:
        while b"\n" not in self._buffer:
            chunk = self.sock.recv(4096)
            if not chunk:
                raise ConnectionError("server closed the connection")
            self._buffer += chunk
        line, self._buffer = self._buffer.split(b"\n", 1)
        return line + b"\n"

    def read_line(self) -> str:
        return self.read_raw_line().decode("utf-8")

    def expect_nothing(self, wait: float = 0.3):
        """Assert no complete line arrives within `wait` seconds."""
        assert b"\n" not in self._buffer, f"unexpected data: {self._buffer!r}"
        readable, _, _ = select.select([self.sock], [], [], wait)
        if readable:
            chunk = self.sock.recv(4096)
            assert chunk == b"", f"unexpected data: {chunk!r}"

    def choose(self, role: str) -> str:
        """Read the role prompt, answer it, return the server's reply."""
        assert self.read_line() == "Type `c` for `consumer`, `p` for producer or `chat` for chat mode\n"
        self.send(f"{role}\n")
        return self.read_line()

    def join_chat(self, name: str):
        assert self.choose("chat") == "Entering `chat` mode, enter your name:\n"
        self.send(f"{name}\n")

    def close(self):
        try:
            self.sock.close()
        except OSError:
            pass


@pytest.fixture
def config() -> MessengerConfig:
    """Default test messenger configuration."""
    return MessengerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def messenger(config: MessengerConfig) -> Generator[Messenger, None, None]:
    """A messenger running in a background thread."""
    server = Messenger(config)
    server.start()

    yield server

    server.shutdown()


@pytest.fixture
def connect(messenger: Messenger) -> Generator[Callable[[], LineClient], None, None]:
    """Factory for clients connected to the running messenger."""
    clients = []

    def _connect() -> LineClient:
        client = LineClient(messenger.address)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        client.close()


@pytest.fixture
def connection_pair() -> Generator[Tuple[Connection, socket.socket], None, None]:
    """A Connection wrapping one end of a socketpair, plus the raw peer end."""
    server_side, peer = socket.socketpair()
    conn = Connection(socket=server_side, address=("127.0.0.1", 40000))
    peer.settimeout(3.0)

    yield conn, peer

    conn.close()
    peer.close()


def run_in_thread(target: Callable, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread
