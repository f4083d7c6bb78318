"""
=============================================================================
RELAY COMPONENTS
=============================================================================

Leaf to root:

    ConnectionRegistry   pool of receiving connections + claimed chat names
    MessagePipeline      blocking handoff from producers to the broadcaster
    SessionClassifier    role negotiation for each new connection
    ProducerReader       per-connection read loop feeding the pipeline
    Broadcaster          drains the pipeline, fans out to the registry
    LifecycleHandler     closes and unregisters failed connections

=============================================================================
"""

from .message import Message
from .pipeline import MessagePipeline
from .registry import ConnectionRegistry, Subscriber
from .session import SessionClassifier, SessionState
from .producer import ProducerReader
from .broadcaster import Broadcaster
from .lifecycle import LifecycleHandler

__all__ = [
    "Message",
    "MessagePipeline",
    "ConnectionRegistry",
    "Subscriber",
    "SessionClassifier",
    "SessionState",
    "ProducerReader",
    "Broadcaster",
    "LifecycleHandler",
]
