"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps an accepted client socket with the small line-oriented
API the relay needs: read one line, send some text, close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A client writing

    send("Hello there\\n")
    send("General Kenobi\\n")

may be observed by the server as

    recv() → "Hello the"
    recv() → "re\\nGeneral Kenobi\\n"

So reads are buffered and split on the protocol delimiter, a single "\\n".
Whatever follows the delimiter stays in the buffer for the next read_line().

=============================================================================
WHO WRITES TO A CONNECTION?
=============================================================================

    ┌──────────────────────────┬──────────────────────────────────────────┐
    │ Phase                    │ Writer                                   │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │ Role selection           │ Session classifier (prompts, replies)    │
    │ Consumer / chat member   │ The connection's delivery worker only    │
    │ Producer                 │ Nobody                                   │
    └──────────────────────────┴──────────────────────────────────────────┘

The hand-over happens at registration, after the classifier's last reply,
so writes are serialized by construction. The write lock below only makes
each individual send() atomic.

=============================================================================
"""

import socket
import time
import threading
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional

from ..errors import ConnectionIOError
from ..logs import get_logger


log = get_logger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and assertions."""
    NEW = "new"                  # Just accepted
    CLASSIFYING = "classifying"  # Session classifier is asking for a role
    PRODUCER = "producer"        # Anonymous producer
    CONSUMER = "consumer"        # Anonymous consumer
    CHAT = "chat"                # Named chat participant
    CLOSED = "closed"            # Socket released


@dataclass(eq=False)
class Connection:
    """
    Represents a client connection.

    eq=False keeps identity hashing, so a Connection can key the registry.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short random identifier used to correlate log lines.
        state: Current lifecycle state.
        created_at: Timestamp when the connection was accepted.
        last_activity: Timestamp of the last successful read or write.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    buffer_size: int = 4096
    timeout: Optional[float] = None
    max_line_length: int = 64 * 1024
    encoding: str = "utf-8"
    # Undecodable bytes become lone surrogates and are re-encoded unchanged
    errors: str = "surrogateescape"

    _buffer: bytes = field(default=b"", repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        # None keeps the socket fully blocking
        self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def remote_address(self) -> str:
        """The peer address rendered as ip:port."""
        if isinstance(self.address, tuple) and len(self.address) >= 2:
            return f"{self.address[0]}:{self.address[1]}"
        return str(self.address)

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    def mark(self, state: ConnectionState) -> None:
        """Move to a new lifecycle state; a closed connection stays closed."""
        with self._close_lock:
            if self.state != ConnectionState.CLOSED:
                self.state = state

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self) -> str:
        """
        Read one newline-terminated line.

        Returns:
            The decoded line including its trailing "\\n". Callers trim.
            Bytes that are not valid UTF-8 survive a later send() unchanged.

        Raises:
            ConnectionIOError: On EOF, reset, timeout, or when the line grows
                               beyond max_line_length. A partial line left in
                               the buffer at EOF is discarded.
        """
        while b"\n" not in self._buffer:
            if len(self._buffer) > self.max_line_length:
                raise ConnectionIOError(f"line exceeds {self.max_line_length} bytes")

            chunk = self._recv()
            if not chunk:
                self._buffer = b""
                raise ConnectionIOError("connection closed by peer")
            self._buffer += chunk

        line_end = self._buffer.index(b"\n") + 1
        if line_end > self.max_line_length + 1:
            raise ConnectionIOError(f"line exceeds {self.max_line_length} bytes")

        raw, self._buffer = self._buffer[:line_end], self._buffer[line_end:]
        self.last_activity = time.time()
        return raw.decode(self.encoding, errors=self.errors)

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except socket.timeout as e:
            raise ConnectionIOError("read timed out", cause=e) from e
        except OSError as e:
            raise ConnectionIOError(f"read failed: {e}", cause=e) from e

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, text: str) -> None:
        """
        Send text to the client.

        sendall() keeps writing until every byte is handed to the kernel;
        a plain send() may write only part of the buffer.

        Raises:
            ConnectionIOError: If the connection is closed or the write fails.
        """
        data = text.encode(self.encoding, errors=self.errors)
        with self._write_lock:
            if self.is_closed:
                raise ConnectionIOError("write on closed connection")
            try:
                self.socket.sendall(data)
            except OSError as e:
                raise ConnectionIOError(f"write failed: {e}", cause=e) from e
        self.last_activity = time.time()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> bool:
        """
        Close the connection.

        Safe to call from several threads; only the first call does any work.

        Returns:
            True if this call closed the socket, False if it was already closed.
        """
        with self._close_lock:
            if self.state == ConnectionState.CLOSED:
                return False
            self.state = ConnectionState.CLOSED

        try:
            # Sends FIN and wakes up a thread blocked in recv() on this socket
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        log.debug("connection closed", conn=self.id, address=self.remote_address,
                  age=f"{self.age:.2f}s")
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
