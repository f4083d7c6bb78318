"""
=============================================================================
PRODUCER READER
=============================================================================

Reads newline-delimited lines from one producer (or chat participant) and
feeds them into the message pipeline.

    ┌──────────┐  read_line()  ┌──────────────┐  put() (may block)  ┌──────────┐
    │  client  │ ────────────► │ ProducerRead │ ──────────────────► │ pipeline │
    └──────────┘               └──────────────┘                     └──────────┘

Nothing is written back to the client; chat participants see other
people's lines through their delivery worker instead.

Any number of readers run concurrently. The pipeline is the only state
they share.

=============================================================================
"""

from typing import Callable

from ..core.connection import Connection
from ..errors import ConnectionIOError, PipelineClosedError
from ..logs import get_logger
from .message import Message
from .pipeline import MessagePipeline


log = get_logger(__name__)


ErrorHandler = Callable[[Connection, ConnectionIOError], None]


class ProducerReader:
    """
    Per-connection read loop.

    Args:
        connection: The producer's connection; this reader owns its read side.
        name: Display name bound to every message (empty for anonymous).
        pipeline: Where messages go.
        on_error: Called once when the loop ends because of an I/O failure.
    """

    def __init__(
        self,
        connection: Connection,
        name: str,
        pipeline: MessagePipeline,
        on_error: ErrorHandler,
    ):
        self.connection = connection
        self.name = name
        self.pipeline = pipeline
        self.on_error = on_error
        self.messages_read = 0

    def run(self) -> None:
        """Loop until the connection fails or the pipeline closes."""
        try:
            while True:
                line = self.connection.read_line()
                content = line.strip()

                log.debug(
                    "message received",
                    producer=self.connection.remote_address,
                    content=content,
                    name=self.name or "-",
                )

                # Blocks while the broadcaster is behind
                self.pipeline.put(Message(name=self.name, content=content))
                self.messages_read += 1
        except ConnectionIOError as e:
            self.on_error(self.connection, e)
        except PipelineClosedError:
            # Pipeline closed: the messenger is shutting down
            self.on_error(self.connection, ConnectionIOError("messenger shutting down"))
