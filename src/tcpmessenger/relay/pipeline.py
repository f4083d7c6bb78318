"""
=============================================================================
MESSAGE PIPELINE
=============================================================================

The single handoff channel between producer readers and the broadcaster.

    Producer A ──┐
    Producer B ──┼──► put() ──► [ pipeline_size slots ] ──► get() ──► Broadcaster
    Chat alice ──┘

=============================================================================
BACKPRESSURE
=============================================================================

put() blocks while the pipeline is full. With the default capacity of one
slot, a producer waits as soon as the broadcaster has one message pending,
so a slow broadcaster throttles every producer. This is the relay's only
flow control.

    pipeline_size = 1   single slot (default)
    pipeline_size = N   N messages may be pending
    pipeline_size = 0   unbounded, put() never blocks

Ordering: first successfully enqueued is first dequeued. Concurrent puts
from different producers race; there is no global sequence number.

=============================================================================
"""

import queue
import threading
from typing import Optional

from ..errors import PipelineClosedError
from .message import Message


class MessagePipeline:
    """
    Blocking FIFO of Message objects with an explicit close.

    queue.Queue already does the locking and the blocking; this class adds
    the close() sentinel so the broadcaster loop can end cleanly.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 1):
        self.maxsize = maxsize
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __len__(self) -> int:
        return self._queue.qsize()

    def put(self, message: Message, timeout: Optional[float] = None) -> None:
        """
        Enqueue a message, blocking while the pipeline is full.

        Raises:
            PipelineClosedError: If the pipeline has been closed.
            queue.Full: If timeout elapses first.
        """
        if self._closed.is_set():
            raise PipelineClosedError("message pipeline is closed")
        self._queue.put(message, timeout=timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """
        Dequeue the next message, blocking until one is available.

        Returns:
            The next Message, or None once the pipeline is closed and the
            close marker is reached.

        Raises:
            queue.Empty: If timeout elapses first.
        """
        while True:
            if self._closed.is_set() and self._queue.empty():
                return None
            item = self._queue.get(timeout=timeout)
            if item is not self._CLOSED:
                return item

    def close(self) -> None:
        """
        Mark the pipeline closed and wake the reader.

        Messages already queued are still delivered before get() returns None.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            # Wakes a reader blocked on an empty queue. A full queue means
            # the reader is not blocked and will see the flag once drained.
            self._queue.put_nowait(self._CLOSED)
        except queue.Full:
            pass
