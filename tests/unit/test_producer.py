"""
Unit tests for the producer read loop.
"""

from conftest import run_in_thread
from tcpmessenger.errors import ConnectionIOError
from tcpmessenger.relay.message import Message
from tcpmessenger.relay.pipeline import MessagePipeline
from tcpmessenger.relay.producer import ProducerReader


def make_reader(conn, name="", maxsize=0):
    pipeline = MessagePipeline(maxsize=maxsize)
    errors = []
    reader = ProducerReader(
        connection=conn,
        name=name,
        pipeline=pipeline,
        on_error=lambda c, e: errors.append((c, e)),
    )
    return reader, pipeline, errors


class TestProducerReader:
    """Tests for ProducerReader."""

    def test_lines_become_messages(self, connection_pair):
        """Test each line is trimmed and queued in order."""
        conn, peer = connection_pair
        reader, pipeline, _ = make_reader(conn)
        thread = run_in_thread(reader.run)

        peer.sendall(b"  Where's the money, Lebowski?  \nsecond\r\n")

        assert pipeline.get(timeout=2.0) == Message("", "Where's the money, Lebowski?")
        assert pipeline.get(timeout=2.0) == Message("", "second")

        peer.close()
        thread.join(2.0)
        assert reader.messages_read == 2

    def test_name_is_bound(self, connection_pair):
        """Test a chat reader stamps its participant's name on every message."""
        conn, peer = connection_pair
        reader, pipeline, _ = make_reader(conn, name="gen. grievious")
        run_in_thread(reader.run)

        peer.sendall(b"Hello there\n")

        assert pipeline.get(timeout=2.0).output_string() == "gen. grievious: Hello there\n"

    def test_blank_lines_are_relayed(self, connection_pair):
        """Test an empty line still produces an empty message."""
        conn, peer = connection_pair
        reader, pipeline, _ = make_reader(conn)
        run_in_thread(reader.run)

        peer.sendall(b"\n")

        assert pipeline.get(timeout=2.0) == Message("", "")

    def test_eof_reports_error(self, connection_pair):
        """Test the loop ends through on_error when the client leaves."""
        conn, peer = connection_pair
        reader, _, errors = make_reader(conn)
        thread = run_in_thread(reader.run)

        peer.close()
        thread.join(2.0)

        assert not thread.is_alive()
        assert len(errors) == 1
        assert errors[0][0] is conn
        assert isinstance(errors[0][1], ConnectionIOError)

    def test_closed_pipeline_ends_loop(self, connection_pair):
        """Test a shutdown pipeline stops the reader on its next line."""
        conn, peer = connection_pair
        reader, pipeline, errors = make_reader(conn)
        pipeline.close()
        thread = run_in_thread(reader.run)

        peer.sendall(b"too late\n")
        thread.join(2.0)

        assert not thread.is_alive()
        assert len(errors) == 1
        assert "shutting down" in str(errors[0][1])
