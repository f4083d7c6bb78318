"""
=============================================================================
MESSENGER ERRORS
=============================================================================

Every failure the relay knows how to handle has its own exception type.

=============================================================================
ERROR TAXONOMY
=============================================================================

    ┌──────────────────────┬───────────────────┬─────────────────────────────┐
    │ Exception            │ Scope             │ What happens                │
    ├──────────────────────┼───────────────────┼─────────────────────────────┤
    │ NameTakenError       │ one chat session  │ text reply, session re-asks │
    │ ConnectionIOError    │ one connection    │ logged, closed, removed     │
    │ ListenError          │ whole process     │ startup aborts              │
    └──────────────────────┴───────────────────┴─────────────────────────────┘

No error crosses between connections: one client's failure never affects
another client's delivery or registration.

=============================================================================
"""

from typing import Optional


class MessengerError(Exception):
    """Base class for all messenger errors."""


class NameTakenError(MessengerError):
    """
    A chat participant asked for a display name that is already claimed.

    The message is sent back to the client verbatim (plus a newline), so
    str(error) is part of the wire protocol.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is already taken")


class ConnectionIOError(MessengerError):
    """
    A read or write on a client connection failed.

    Always fatal to that one connection, never to the process.

    Attributes:
        cause: The underlying OSError (or None for protocol-level failures
               such as EOF or an over-long line).
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ListenError(MessengerError):
    """Binding or listening on the configured address failed."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"unable to listen on {host}:{port}: {cause}")


class PipelineClosedError(MessengerError):
    """A producer tried to enqueue after the message pipeline was closed."""
