"""
=============================================================================
TCPMESSENGER - In-Memory Line Relay over TCP
=============================================================================

Clients connect to one TCP port, pick a role, and the relay fans every line
a producer sends out to every connected consumer.

=============================================================================
ROLES
=============================================================================

    ┌──────────┬──────────────────────────────────────────────────────────┐
    │ Token    │ Role                                                     │
    ├──────────┼──────────────────────────────────────────────────────────┤
    │ p        │ Anonymous producer: every line it sends is broadcast     │
    │ c        │ Anonymous consumer: receives every broadcast line        │
    │ chat     │ Named participant: both of the above, except it never    │
    │          │ receives its own lines; delivered as "<name>: <line>"    │
    └──────────┴──────────────────────────────────────────────────────────┘

=============================================================================
QUICK START
=============================================================================

    # Terminal 1
    python -m tcpmessenger --port 8033

    # Terminal 2
    nc localhost 8033
    c

    # Terminal 3
    nc localhost 8033
    p
    Where's the money, Lebowski?     ← appears in terminal 2

    # Embedding
    from tcpmessenger import Messenger, MessengerConfig

    messenger = Messenger(MessengerConfig(host="127.0.0.1", port=0))
    host, port = messenger.start()
    ...
    messenger.shutdown()

=============================================================================
NOT INCLUDED
=============================================================================

- Persistence: messages live only in memory, and only until delivered
- Authentication or authorization of any kind
- Flow control beyond blocking writes into the message pipeline

=============================================================================
"""

__version__ = "1.0.0"

from .server import Messenger
from .config import MessengerConfig
from .errors import (
    MessengerError,
    NameTakenError,
    ConnectionIOError,
    ListenError,
    PipelineClosedError,
)

__all__ = [
    "Messenger",
    "MessengerConfig",
    "MessengerError",
    "NameTakenError",
    "ConnectionIOError",
    "ListenError",
    "PipelineClosedError",
    "__version__",
]
