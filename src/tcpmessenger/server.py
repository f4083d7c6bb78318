"""
=============================================================================
MESSENGER
=============================================================================

The orchestrator that wires the relay together and owns its threads.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                             Messenger                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   SocketServer ──accept──► session thread (one per connection)     │
    │                               │                                     │
    │                               ▼                                     │
    │                        SessionClassifier                            │
    │                     ┌─────────┴──────────┐                          │
    │            "p" / "chat"                "c" / "chat"                 │
    │                     ▼                    ▼                          │
    │            ProducerReader        ConnectionRegistry                 │
    │            (reader thread)              ▲                           │
    │                     │                   │ broadcast_view()          │
    │                     ▼                   │                           │
    │             MessagePipeline ──────► Broadcaster ──► DeliveryWorkers │
    │                                                                     │
    │   LifecycleHandler: every I/O failure → close + remove              │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THREADS
=============================================================================

    accept loop        1          blocks in accept()
    broadcaster        1          blocks in pipeline.get()
    session/reader     1 per client   blocks in read_line() / pipeline.put()
    delivery worker    1 per receiving client   blocks in sendall()

The only shared mutable state is the registry (two locks) and the pipeline.

=============================================================================
"""

import threading
import time
from typing import Callable, Optional, Tuple

from .config import MessengerConfig
from .core import SocketServer, Connection
from .errors import ListenError
from .logs import get_logger, setup_logging
from .relay import (
    Broadcaster,
    ConnectionRegistry,
    LifecycleHandler,
    MessagePipeline,
    ProducerReader,
    SessionClassifier,
)


log = get_logger(__name__)


class Messenger:
    """
    In-memory line relay.

    Usage:
        # Blocking, from the main thread (installs SIGINT/SIGTERM handlers)
        Messenger(MessengerConfig(port=8033)).run()

        # Background, for tests or embedding
        messenger = Messenger(MessengerConfig(host="127.0.0.1", port=0))
        messenger.start()
        host, port = messenger.address
        ...
        messenger.shutdown()
    """

    def __init__(self, config: Optional[MessengerConfig] = None):
        self.config = config or MessengerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self.pipeline = MessagePipeline(maxsize=self.config.pipeline_size)
        self.registry = ConnectionRegistry(release_names=self.config.release_names)
        self.lifecycle = LifecycleHandler(self.registry)
        # Delivery failures go through the same close-and-remove path as read failures
        self.registry.on_delivery_failure = self.lifecycle.handle_error
        self._broadcaster: Optional[Broadcaster] = None

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._startup_error: Optional[BaseException] = None
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port)."""
        return self._socket_server.address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """
        Start the messenger and block until shutdown.

        Raises:
            ListenError: If the listening socket cannot be set up.
        """
        setup_logging(self.config.log_level, self.config.log_format)
        log.info("created new messenger", port=self.config.port)

        self._running = True
        self._stopped.clear()
        self._broadcaster = Broadcaster(self.pipeline, self.registry)
        self._broadcaster.start()

        log.info("messenger running")
        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            log.info("received keyboard interrupt")
        finally:
            self._shutdown()

    def start(self, timeout: float = 5.0) -> Tuple[str, int]:
        """
        Run the messenger in a background thread.

        Returns once the socket is listening.

        Returns:
            The bound (host, port).

        Raises:
            ListenError: If the socket could not be bound.
            RuntimeError: If the server did not come up within timeout.
        """
        self._startup_error = None
        self._thread = threading.Thread(target=self._run_in_thread, name="messenger", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + timeout
        while not self._socket_server.wait_until_ready(0.05):
            if not self._thread.is_alive():
                if self._startup_error is not None:
                    raise self._startup_error
                raise RuntimeError("messenger exited during startup")
            if time.monotonic() > deadline:
                raise RuntimeError("messenger failed to start")
        return self.address

    def _run_in_thread(self) -> None:
        try:
            self.run()
        except ListenError as e:
            self._startup_error = e

    def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop accepting, drain the broadcaster and close every connection.

        Safe to call from any thread and more than once.
        """
        self._socket_server.shutdown()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        if self._broadcaster is not None:
            self._stopped.wait(timeout)

    def _shutdown(self) -> None:
        log.info("shutting down messenger")
        self._running = False

        if self._broadcaster is not None:
            self._broadcaster.stop(timeout=5.0)

        closed = self.lifecycle.close_all()
        self.registry.close_all()

        log.info("messenger stopped", connections_closed=closed)
        self._stopped.set()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection) -> None:
        """Start the session thread for a newly accepted connection."""
        self.lifecycle.track(conn)
        classifier = SessionClassifier(
            connection=conn,
            registry=self.registry,
            spawn_reader=self._spawn_reader,
            on_error=self.lifecycle.handle_error,
        )
        self._start_task(f"session-{conn.id}", conn, classifier.run)

    def _spawn_reader(self, conn: Connection, name: str) -> None:
        """Hand a producer or chat connection's read side to its own thread."""
        reader = ProducerReader(
            connection=conn,
            name=name,
            pipeline=self.pipeline,
            on_error=self.lifecycle.handle_error,
        )
        self._start_task(f"producer-{conn.id}", conn, reader.run)

    def _start_task(self, name: str, conn: Connection, task: Callable[[], object]) -> None:
        threading.Thread(target=self._guarded, args=(conn, task), name=name, daemon=True).start()

    def _guarded(self, conn: Connection, task: Callable[[], object]) -> None:
        """Run a per-connection task; an unexpected exception closes only that connection."""
        try:
            task()
        except Exception:
            log.exception("unexpected error in connection task", conn=conn.id,
                          address=conn.remote_address)
            conn.close()
            self.lifecycle.release(conn)
