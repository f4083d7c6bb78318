"""
=============================================================================
BROADCASTER
=============================================================================

The single consumer of the message pipeline. For every message it takes the
registry pool lock, hands the formatted text to each subscriber's delivery
worker and releases the lock.

    ┌──────────┐  get()  ┌─────────────┐   deliver()   ┌──────────────────┐
    │ pipeline │ ──────► │ Broadcaster │ ────────────► │ delivery workers │
    └──────────┘         └─────────────┘               └──────────────────┘
                               │
                               └── skip subscriber if message.name == subscriber.name

Writes complete on the workers' threads after the lock is released. A
failed write is reported by the worker and never interrupts this loop.

=============================================================================
"""

import threading
from typing import Optional

from ..logs import get_logger
from .message import Message
from .pipeline import MessagePipeline
from .registry import ConnectionRegistry


log = get_logger(__name__)


class Broadcaster(threading.Thread):
    """
    Fans every pipeline message out to the registry.

    Stops when the pipeline is closed.
    """

    def __init__(self, pipeline: MessagePipeline, registry: ConnectionRegistry):
        super().__init__(name="broadcaster", daemon=True)
        self.pipeline = pipeline
        self.registry = registry
        self.messages_relayed = 0

    def run(self):
        log.debug("broadcaster started")
        while True:
            message = self.pipeline.get()
            if message is None:
                break
            try:
                self.broadcast(message)
            except Exception:
                # One bad pass must not end the relay for everyone
                log.exception("broadcast failed", content=message.content)
        log.debug("broadcaster stopped", relayed=self.messages_relayed)

    def broadcast(self, message: Message) -> int:
        """
        Dispatch one message to every subscriber it is not excluded from.

        Returns:
            Number of subscribers the message was queued for.
        """
        text = message.output_string()
        recipients = 0

        with self.registry.broadcast_view() as subscribers:
            for subscriber in subscribers:
                if message.excludes(subscriber.name):
                    continue
                if subscriber.deliver(text):
                    recipients += 1

        self.messages_relayed += 1
        log.debug("message broadcast", name=message.name or "-", recipients=recipients)
        return recipients

    def stop(self, timeout: Optional[float] = None) -> None:
        """Close the pipeline and wait for queued messages to be dispatched."""
        self.pipeline.close()
        if self.is_alive():
            self.join(timeout)
