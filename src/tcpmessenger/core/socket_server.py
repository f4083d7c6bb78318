"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

This module owns the listening socket: it binds, listens and accepts, and
hands every accepted client to a callback wrapped in a Connection. It knows
nothing about roles, names or messages.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a TCP/IPv4 socket
    2. bind()      Reserve host:port           ──► ListenError on failure
    3. listen()    Start queueing connections  ──► ListenError on failure
    4. accept()    Wait for a client, return a NEW socket for it
    5. close()     Release the listening socket on shutdown

    listen socket ── accept() ──► Connection ── handler(conn) ──► session thread

=============================================================================
SIGNAL HANDLING
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) trigger shutdown().
Python only allows installing signal handlers from the main thread, so
when the server runs in a background thread (tests, embedding) the
handlers are left alone and shutdown() must be called explicitly.

=============================================================================
"""

import socket
import signal
import threading
from typing import Optional, Callable, Tuple

from ..config import MessengerConfig
from ..errors import ListenError
from ..logs import get_logger
from .connection import Connection


log = get_logger(__name__)


class SocketServer:
    """
    Low-level TCP socket server.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown()
    """

    def __init__(self, config: MessengerConfig):
        self.config = config

        # Created in start()
        self._socket: Optional[socket.socket] = None
        self._bound_address: Optional[Tuple[str, int]] = None

        self._running = False

        # Set once the socket is listening; start() callers on other
        # threads wait on it before dialing in
        self._ready_event = threading.Event()
        self._shutdown_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); with port 0 this is the port the OS chose."""
        if self._bound_address is not None:
            return self._bound_address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoid "Address already in use" while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Relayed lines are small and latency matters more than throughput
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up every second to check the running flag
        sock.settimeout(1.0)

        return sock

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            log.info("received signal, initiating shutdown", signal=signal_name)
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and run the accept loop.

        This method BLOCKS until shutdown() is called.

        Args:
            connection_handler: Called once per accepted connection, on the
                                accept thread; it must not block.

        Raises:
            ListenError: If the address cannot be bound or listened on.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            log.critical(f"unable to listen on provided port: {e}",
                         host=self.config.host, port=self.config.port)
            self._socket.close()
            self._socket = None
            raise ListenError(self.config.host, self.config.port, e) from e

        self._bound_address = self._socket.getsockname()[:2]
        self._running = True
        self._shutdown_event.clear()

        self._setup_signals()

        log.info("listening for connections", host=self.address[0], port=self.address[1])
        self._ready_event.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                # Normal: gives the loop a chance to see shutdown()
                continue
            except OSError as e:
                if not self._running:
                    break
                # EMFILE, ECONNABORTED: keep listening
                log.error(f"unable to accept connection: {e}")
                continue

            log.debug("accepted connection", address=f"{client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.idle_timeout,
                max_line_length=self.config.max_line_length,
            )
            connection_handler(conn)

    def shutdown(self):
        """Stop accepting connections. Idempotent, callable from any thread."""
        if self._running:
            log.info("shutting down socket server")
        self._running = False
        self._shutdown_event.set()

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._ready_event.clear()
        self._shutdown_event.set()
        log.info("socket server stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. Returns False on timeout."""
        return self._ready_event.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until the accept loop has stopped. Returns False on timeout."""
        return self._shutdown_event.wait(timeout)
