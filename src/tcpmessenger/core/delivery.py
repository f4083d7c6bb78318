"""
=============================================================================
DELIVERY WORKERS
=============================================================================

A delivery worker is a thread that owns the write side of one registered
connection. The broadcaster never touches a socket: it drops the formatted
text into the worker's queue and moves on.

=============================================================================
WHY ONE WORKER PER DESTINATION?
=============================================================================

    Broadcaster ──► submit("alice: hi\\n") ──┬──► [queue] ──► Worker(conn A) ──► sendall
                                             ├──► [queue] ──► Worker(conn B) ──► sendall
                                             └──► [queue] ──► Worker(conn C) ──► (blocked, slow client)

1. FIRE-AND-FORGET: submit() never blocks, so a slow or dead consumer
   cannot stall delivery to everyone else.
2. ORDER: each destination has exactly one FIFO and one writer, so the
   messages of a single producer arrive in the order they were relayed.
   A shared pool of writer threads could reorder two messages bound for the
   same connection.
3. FAILURES ARE NOT LOST: the first write error is handed to the
   on_failure callback (the lifecycle handler), which closes the connection
   and removes it from the registry.

=============================================================================
SHUTDOWN: THE POISON PILL
=============================================================================

stop() enqueues None. The worker exits when it dequeues it, after writing
everything submitted before the pill.

=============================================================================
"""

import queue
import threading
from enum import Enum
from typing import Callable, Optional

from .connection import Connection
from ..errors import ConnectionIOError
from ..logs import get_logger


log = get_logger(__name__)


FailureCallback = Callable[[Connection, ConnectionIOError], None]


class WorkerState(Enum):
    """Delivery worker states."""
    IDLE = "idle"        # Waiting for text to deliver
    BUSY = "busy"        # Inside sendall()
    STOPPED = "stopped"  # Thread exited


class DeliveryWorker(threading.Thread):
    """
    Writes queued text to one connection, in order.

    Usage:
        worker = DeliveryWorker(conn, on_failure=lifecycle.handle_error)
        worker.start()
        worker.submit("hello\\n")
        worker.stop()
    """

    def __init__(self, connection: Connection, on_failure: Optional[FailureCallback] = None):
        # daemon=True: a client stuck in a full TCP window must not keep
        # the process alive at exit
        super().__init__(name=f"delivery-{connection.id}", daemon=True)

        self.connection = connection
        self.on_failure = on_failure

        # Unbounded: submit() is called with the registry pool lock held
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self._stopped = threading.Event()

        self.state = WorkerState.IDLE
        self.delivered = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        """Approximate number of messages waiting to be written."""
        return self._queue.qsize()

    def submit(self, text: str) -> bool:
        """
        Queue text for delivery. Never blocks.

        Returns:
            False if the worker has already stopped and the text was dropped.
        """
        if self._stopped.is_set():
            return False
        self._queue.put(text)
        return True

    def stop(self) -> None:
        """Let the worker finish what is queued, then exit."""
        if not self._stopped.is_set():
            self._stopped.set()
            self._queue.put(None)

    def run(self):
        log.debug("delivery worker started", conn=self.connection.id)

        while True:
            text = self._queue.get()
            if text is None:
                break

            self.state = WorkerState.BUSY
            try:
                self.connection.send(text)
                self.delivered += 1
            except ConnectionIOError as e:
                self.failed += 1
                self._stopped.set()
                self._report(e)
                break
            finally:
                self.state = WorkerState.IDLE

        self.state = WorkerState.STOPPED
        log.debug("delivery worker stopped", conn=self.connection.id,
                  delivered=self.delivered, dropped=self.pending)

    def _report(self, error: ConnectionIOError) -> None:
        if self.on_failure is None:
            log.error(f"connection error: {error}", address=self.connection.remote_address)
            self.connection.close()
            return
        try:
            self.on_failure(self.connection, error)
        except Exception:
            log.exception("delivery failure handler raised", conn=self.connection.id)
            self.connection.close()
