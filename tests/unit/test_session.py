"""
Unit tests for role negotiation.
"""

import socket
import threading

import pytest

from conftest import run_in_thread, wait_for
from tcpmessenger.core.connection import Connection, ConnectionState
from tcpmessenger.relay.registry import ConnectionRegistry
from tcpmessenger.relay.session import (
    CHAT_NAME_PROMPT,
    CONSUMER_ACK,
    EMPTY_NAME,
    PRODUCER_ACK,
    ROLE_PROMPT,
    TRANSITIONS,
    UNCLEAR_CHOICE,
    SessionClassifier,
    SessionState,
)


class PeerReader:
    """Reads whole lines from the raw client end of a socketpair."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buffer = b""

    def read_line(self) -> str:
        while b"\n" not in self._buffer:
            chunk = self.sock.recv(4096)
            if not chunk:
                raise ConnectionError("closed")
            self._buffer += chunk
        line, self._buffer = self._buffer.split(b"\n", 1)
        return line.decode("utf-8") + "\n"

    def send(self, text: str):
        self.sock.sendall(text.encode("utf-8"))


class Session:
    """A classifier running in a thread with its collaborators recorded."""

    def __init__(self, conn: Connection, registry: ConnectionRegistry):
        self.conn = conn
        self.registry = registry
        self.readers = []
        self.errors = []
        self.result = []
        self.classifier = SessionClassifier(
            connection=conn,
            registry=registry,
            spawn_reader=lambda c, name: self.readers.append((c, name)),
            on_error=self._on_error,
        )

    def _on_error(self, conn, error):
        self.errors.append(error)
        conn.close()

    def start(self) -> threading.Thread:
        return run_in_thread(lambda: self.result.append(self.classifier.run()))


@pytest.fixture
def registry():
    registry = ConnectionRegistry()
    yield registry
    registry.close_all()


@pytest.fixture
def session(connection_pair, registry):
    conn, peer = connection_pair
    session = Session(conn, registry)
    thread = session.start()
    yield session, PeerReader(peer)
    conn.close()
    thread.join(2.0)


class TestRoleChoice:
    """Tests for the role prompt."""

    def test_producer(self, session):
        """Test `p` hands the connection to an anonymous reader."""
        s, peer = session
        assert peer.read_line() == ROLE_PROMPT
        peer.send("p\n")
        assert peer.read_line() == PRODUCER_ACK

        assert _wait_result(s) == SessionState.HANDED_OFF
        assert s.readers == [(s.conn, "")]
        assert s.conn.state == ConnectionState.PRODUCER
        assert s.conn not in s.registry

    def test_consumer(self, session):
        """Test `c` registers an anonymous consumer and spawns no reader."""
        s, peer = session
        assert peer.read_line() == ROLE_PROMPT
        peer.send("c\n")
        assert peer.read_line() == CONSUMER_ACK

        assert _wait_result(s) == SessionState.HANDED_OFF
        assert s.conn in s.registry
        assert s.registry.name_of(s.conn) == ""
        assert s.readers == []

    def test_choice_is_trimmed(self, session):
        """Test whitespace around the token is ignored."""
        s, peer = session
        peer.read_line()
        peer.send("  c \r\n")
        assert peer.read_line() == CONSUMER_ACK

    def test_unclear_choice_reprompts(self, session):
        """Test an unknown token gets a notice and the prompt again."""
        s, peer = session
        assert peer.read_line() == ROLE_PROMPT
        peer.send("consumer\n")
        assert peer.read_line() == UNCLEAR_CHOICE
        assert peer.read_line() == ROLE_PROMPT
        peer.send("p\n")
        assert peer.read_line() == PRODUCER_ACK

    def test_tokens_are_case_sensitive(self, session):
        """Test `P` is not the producer token."""
        s, peer = session
        peer.read_line()
        peer.send("P\n")
        assert peer.read_line() == UNCLEAR_CHOICE


class TestChat:
    """Tests for chat name negotiation."""

    def test_chat_registration(self, session):
        """Test a free name is registered and bound to the reader."""
        s, peer = session
        peer.read_line()
        peer.send("chat\n")
        assert peer.read_line() == CHAT_NAME_PROMPT
        peer.send(" obi-van-kenobi \n")

        assert _wait_result(s) == SessionState.HANDED_OFF
        assert s.registry.name_of(s.conn) == "obi-van-kenobi"
        assert s.readers == [(s.conn, "obi-van-kenobi")]
        assert s.conn.state == ConnectionState.CHAT

    def test_name_taken_then_retry(self, session, registry):
        """Test a taken name is reported and the session starts over."""
        s, peer = session
        other_a, other_b = socket.socketpair()
        other = Connection(socket=other_a, address=("127.0.0.1", 40001))
        registry.register(other, "alice")

        try:
            peer.read_line()
            peer.send("chat\n")
            assert peer.read_line() == CHAT_NAME_PROMPT
            peer.send("alice\n")
            assert peer.read_line() == "alice is already taken\n"
            assert peer.read_line() == ROLE_PROMPT

            peer.send("chat\n")
            assert peer.read_line() == CHAT_NAME_PROMPT
            peer.send("alice2\n")

            assert _wait_result(s) == SessionState.HANDED_OFF
            assert registry.name_of(s.conn) == "alice2"
            assert registry.name_of(other) == "alice"
        finally:
            other.close()
            other_b.close()

    def test_empty_name_rejected(self, session):
        """Test a blank name is refused and the role prompt repeats."""
        s, peer = session
        peer.read_line()
        peer.send("chat\n")
        assert peer.read_line() == CHAT_NAME_PROMPT
        peer.send("   \n")
        assert peer.read_line() == EMPTY_NAME
        assert peer.read_line() == ROLE_PROMPT
        assert s.registry.names() == set()


class TestFailures:
    """Tests for I/O failures during negotiation."""

    def test_disconnect_before_choice(self, session):
        """Test EOF during the prompt ends the session as FAILED."""
        s, peer = session
        peer.read_line()
        peer.sock.close()

        assert _wait_result(s) == SessionState.FAILED
        assert len(s.errors) == 1
        assert s.conn.is_closed
        assert s.readers == []

    def test_disconnect_while_naming(self, session):
        """Test EOF at the name prompt claims no name."""
        s, peer = session
        peer.read_line()
        peer.send("chat\n")
        peer.read_line()
        peer.sock.close()

        assert _wait_result(s) == SessionState.FAILED
        assert s.registry.names() == set()


class TestTransitions:
    """Tests for the transition table."""

    def test_every_handled_state_has_edges(self):
        """Test each non-terminal state lists its outgoing edges."""
        for state in SessionState:
            if not state.is_terminal:
                assert state in TRANSITIONS
                assert SessionState.FAILED in TRANSITIONS[state]

    def test_terminal_states(self):
        """Test only HANDED_OFF and FAILED are terminal."""
        terminal = {state for state in SessionState if state.is_terminal}
        assert terminal == {SessionState.HANDED_OFF, SessionState.FAILED}

    def test_roles_are_not_revisited_directly(self):
        """Test a producer cannot become a consumer without a new session."""
        assert SessionState.CONSUMER not in TRANSITIONS[SessionState.PRODUCER]
        assert SessionState.PRODUCER not in TRANSITIONS[SessionState.CONSUMER]


def _wait_result(s: Session, timeout: float = 2.0) -> SessionState:
    assert wait_for(lambda: bool(s.result), timeout=timeout)
    return s.result[0]
