"""
=============================================================================
SESSION CLASSIFIER
=============================================================================

Every accepted connection starts here. The classifier asks the client for a
role and, for chat, a display name, then hands the connection over to the
component that serves that role for the rest of its life.

=============================================================================
PROTOCOL
=============================================================================

    server: Type `c` for `consumer`, `p` for producer or `chat` for chat mode
    client: c
    server: Entering `consumer` mode
            ... broadcast lines follow ...

    server: Type `c` for `consumer`, `p` for producer or `chat` for chat mode
    client: chat
    server: Entering `chat` mode, enter your name:
    client: alice
    server: alice is already taken
    server: Type `c` for `consumer`, `p` for producer or `chat` for chat mode
    ...

=============================================================================
STATE MACHINE
=============================================================================

                         ┌───────────────────────────────┐
                         │                               │ unclear choice,
                         ▼                               │ name taken, empty name
              ┌──────────────────────┐                   │
     ────────►│ AWAITING_ROLE_CHOICE │───────────────────┤
              └──────────┬───────────┘                   │
          "p"            │ "c"           "chat"          │
      ┌──────────────────┼──────────────────┐            │
      ▼                  ▼                  ▼            │
 ┌──────────┐      ┌──────────┐    ┌────────────────────┐│
 │ PRODUCER │      │ CONSUMER │    │ CHAT_AWAITING_NAME │┤
 └────┬─────┘      └────┬─────┘    └─────────┬──────────┘│
      │                 │                    ▼           │
      │                 │          ┌──────────────────┐  │
      │                 │          │ CHAT_REGISTERING │──┘
      │                 │          └─────────┬────────┘
      ▼                 ▼                    ▼
 ┌─────────────────────────────────────────────────────┐
 │ HANDED_OFF                                          │   any I/O error ──► FAILED
 └─────────────────────────────────────────────────────┘

Each non-terminal state has exactly one handler method that performs its
I/O and returns the next state. TRANSITIONS lists every legal edge; run()
refuses anything else.

=============================================================================
"""

from enum import Enum
from typing import Callable, Dict

from ..core.connection import Connection, ConnectionState
from ..errors import ConnectionIOError, NameTakenError
from ..logs import get_logger
from .registry import ConnectionRegistry


log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# WIRE TEXT
# ─────────────────────────────────────────────────────────────────────────────

ROLE_PROMPT = "Type `c` for `consumer`, `p` for producer or `chat` for chat mode\n"
PRODUCER_ACK = "Entering `producer` mode\n"
CONSUMER_ACK = "Entering `consumer` mode\n"
CHAT_NAME_PROMPT = "Entering `chat` mode, enter your name:\n"
UNCLEAR_CHOICE = "Unclear consumer/producer choice\n"
EMPTY_NAME = "name cannot be empty\n"


class SessionState(Enum):
    AWAITING_ROLE_CHOICE = "awaiting_role_choice"
    PRODUCER = "producer"
    CONSUMER = "consumer"
    CHAT_AWAITING_NAME = "chat_awaiting_name"
    CHAT_REGISTERING = "chat_registering"
    HANDED_OFF = "handed_off"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.HANDED_OFF, SessionState.FAILED)


ROLE_TOKENS: Dict[str, SessionState] = {
    "p": SessionState.PRODUCER,
    "c": SessionState.CONSUMER,
    "chat": SessionState.CHAT_AWAITING_NAME,
}

TRANSITIONS = {
    SessionState.AWAITING_ROLE_CHOICE: {
        SessionState.AWAITING_ROLE_CHOICE,
        SessionState.PRODUCER,
        SessionState.CONSUMER,
        SessionState.CHAT_AWAITING_NAME,
        SessionState.FAILED,
    },
    SessionState.PRODUCER: {SessionState.HANDED_OFF, SessionState.FAILED},
    SessionState.CONSUMER: {SessionState.HANDED_OFF, SessionState.FAILED},
    SessionState.CHAT_AWAITING_NAME: {
        SessionState.CHAT_REGISTERING,
        SessionState.AWAITING_ROLE_CHOICE,
        SessionState.FAILED,
    },
    SessionState.CHAT_REGISTERING: {
        SessionState.HANDED_OFF,
        SessionState.AWAITING_ROLE_CHOICE,
        SessionState.FAILED,
    },
}


ReaderSpawner = Callable[[Connection, str], None]
ErrorHandler = Callable[[Connection, ConnectionIOError], None]


class SessionClassifier:
    """
    Role negotiation for one connection.

    Args:
        connection: The freshly accepted connection.
        registry: Where consumers and chat participants are registered.
        spawn_reader: Starts a producer reader for (connection, name).
        on_error: Called once if the session ends on an I/O failure.
    """

    def __init__(
        self,
        connection: Connection,
        registry: ConnectionRegistry,
        spawn_reader: ReaderSpawner,
        on_error: ErrorHandler,
    ):
        self.connection = connection
        self.registry = registry
        self.spawn_reader = spawn_reader
        self.on_error = on_error

        self.state = SessionState.AWAITING_ROLE_CHOICE
        self.name = ""

        self._handlers = {
            SessionState.AWAITING_ROLE_CHOICE: self._await_role_choice,
            SessionState.PRODUCER: self._enter_producer,
            SessionState.CONSUMER: self._enter_consumer,
            SessionState.CHAT_AWAITING_NAME: self._await_chat_name,
            SessionState.CHAT_REGISTERING: self._register_chat,
        }

    def run(self) -> SessionState:
        """
        Drive the state machine to a terminal state.

        Returns:
            HANDED_OFF if the connection now belongs to a reader or the
            registry, FAILED if it was closed on an I/O error.
        """
        self.connection.mark(ConnectionState.CLASSIFYING)

        while not self.state.is_terminal:
            try:
                next_state = self._handlers[self.state]()
            except ConnectionIOError as e:
                self.on_error(self.connection, e)
                next_state = SessionState.FAILED

            if next_state not in TRANSITIONS[self.state]:
                raise RuntimeError(f"illegal session transition {self.state.name} -> {next_state.name}")

            log.debug("session transition", conn=self.connection.id,
                      source=self.state.name, target=next_state.name)
            self.state = next_state

        return self.state

    # =========================================================================
    # STATE HANDLERS
    # =========================================================================

    def _await_role_choice(self) -> SessionState:
        self.connection.send(ROLE_PROMPT)
        choice = self.connection.read_line().strip()

        next_state = ROLE_TOKENS.get(choice)
        if next_state is None:
            self.connection.send(UNCLEAR_CHOICE)
            return SessionState.AWAITING_ROLE_CHOICE
        return next_state

    def _enter_producer(self) -> SessionState:
        self.connection.send(PRODUCER_ACK)
        self.connection.mark(ConnectionState.PRODUCER)
        log.info("registered new producer", conn=self.connection.id,
                 address=self.connection.remote_address)
        self.spawn_reader(self.connection, "")
        return SessionState.HANDED_OFF

    def _enter_consumer(self) -> SessionState:
        # The ack goes out before registration: once registered, only the
        # delivery worker writes to this connection
        self.connection.send(CONSUMER_ACK)
        self.connection.mark(ConnectionState.CONSUMER)
        self.registry.register(self.connection, "")
        log.info("registered new consumer", conn=self.connection.id,
                 address=self.connection.remote_address)
        return SessionState.HANDED_OFF

    def _await_chat_name(self) -> SessionState:
        self.connection.send(CHAT_NAME_PROMPT)
        name = self.connection.read_line().strip()

        if not name:
            self.connection.send(EMPTY_NAME)
            return SessionState.AWAITING_ROLE_CHOICE

        self.name = name
        return SessionState.CHAT_REGISTERING

    def _register_chat(self) -> SessionState:
        try:
            self.registry.register(self.connection, self.name)
        except NameTakenError as e:
            log.info("chat name rejected", conn=self.connection.id, name=self.name)
            self.name = ""
            self.connection.send(f"{e}\n")
            return SessionState.AWAITING_ROLE_CHOICE

        self.connection.mark(ConnectionState.CHAT)
        self.spawn_reader(self.connection, self.name)
        log.info("registered new chat member", conn=self.connection.id,
                 address=self.connection.remote_address, name=self.name)
        return SessionState.HANDED_OFF
