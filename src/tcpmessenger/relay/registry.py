"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The registry is the pool of every connection that receives broadcasts
(plain consumers and chat participants) plus the set of display names
claimed by chat participants.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         ConnectionRegistry                          │
    ├─────────────────────────────────┬───────────────────────────────────┤
    │  pool          (_pool_lock)     │  names          (_names_lock)     │
    │  ─────────────────────────────  │  ──────────────────────────────   │
    │  conn 1 → Subscriber(name="")   │  "obi-van-kenobi"                 │
    │  conn 2 → Subscriber(name=      │  "gen. grievious"                 │
    │            "obi-van-kenobi")    │                                   │
    │  conn 3 → Subscriber(name=      │                                   │
    │            "gen. grievious")    │                                   │
    └─────────────────────────────────┴───────────────────────────────────┘

=============================================================================
LOCK DISCIPLINE
=============================================================================

Two locks, never held at the same time:

    register():  names lock  (check-and-insert name)  → release
                 pool lock   (insert entry)            → release
    remove():    pool lock   (delete entry)            → release
                 names lock  (release name)            → release
    broadcast:   pool lock for one whole fan-out pass

Because no thread ever waits for one lock while holding the other, the
acquisition order cannot deadlock. The broadcaster only ever takes the
pool lock.

Holding the pool lock for a full fan-out pass keeps the view consistent,
at the price that a registration waits for the current pass to finish.
The pass only enqueues into delivery workers, so it is short.

=============================================================================
DISPLAY NAMES AFTER DISCONNECT
=============================================================================

With release_names=True (the default) a chat participant's name becomes
available again as soon as its connection is removed. With
release_names=False a claimed name stays reserved for the lifetime of the
process, even after its owner is gone.

=============================================================================
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Set

from ..core.connection import Connection
from ..core.delivery import DeliveryWorker, FailureCallback
from ..errors import NameTakenError
from ..logs import get_logger


log = get_logger(__name__)


@dataclass
class Subscriber:
    """
    A registry entry: a connection that receives broadcasts.

    Attributes:
        connection: The client connection.
        name: Display name; empty for anonymous consumers.
        worker: The delivery worker owning the connection's write side.
    """

    connection: Connection
    name: str
    worker: DeliveryWorker

    def deliver(self, text: str) -> bool:
        """Queue text for this subscriber without blocking."""
        return self.worker.submit(text)


class ConnectionRegistry:
    """
    Thread-safe pool of consumer-equivalent connections and chat names.

    Args:
        on_delivery_failure: Passed to every delivery worker; called with
                             (connection, error) when a write fails.
        release_names: Release a chat name when its connection is removed.
        worker_factory: Builds the delivery worker for a new entry.
    """

    def __init__(
        self,
        on_delivery_failure: Optional[FailureCallback] = None,
        release_names: bool = True,
        worker_factory: Callable[[Connection, Optional[FailureCallback]], DeliveryWorker] = DeliveryWorker,
    ):
        self.on_delivery_failure = on_delivery_failure
        self.release_names = release_names
        self._worker_factory = worker_factory

        self._pool: Dict[Connection, Subscriber] = {}
        self._pool_lock = threading.Lock()

        self._names: Set[str] = set()
        self._names_lock = threading.Lock()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(self, conn: Connection, name: str = "") -> Subscriber:
        """
        Add a connection to the pool, claiming its display name if given.

        Raises:
            NameTakenError: If name is non-empty and already claimed. The
                            connection is NOT added to the pool.
        """
        if name:
            with self._names_lock:
                if name in self._names:
                    raise NameTakenError(name)
                self._names.add(name)

        worker = self._worker_factory(conn, self.on_delivery_failure)
        subscriber = Subscriber(connection=conn, name=name, worker=worker)
        worker.start()

        with self._pool_lock:
            self._pool[conn] = subscriber

        return subscriber

    def remove(self, conn: Connection) -> Optional[Subscriber]:
        """
        Remove a connection from the pool.

        Idempotent: removing an absent connection does nothing.

        Returns:
            The removed entry, or None if conn was not registered.
        """
        with self._pool_lock:
            subscriber = self._pool.pop(conn, None)

        if subscriber is None:
            return None

        subscriber.worker.stop()

        if subscriber.name and self.release_names:
            with self._names_lock:
                self._names.discard(subscriber.name)

        log.info("removed connection from pool", conn=conn.id,
                 address=conn.remote_address, name=subscriber.name or "-")
        return subscriber

    # =========================================================================
    # BROADCAST VIEW
    # =========================================================================

    @contextmanager
    def broadcast_view(self) -> Iterator[List[Subscriber]]:
        """
        Hold the pool lock for one fan-out pass.

            with registry.broadcast_view() as subscribers:
                for subscriber in subscribers:
                    subscriber.deliver(text)

        Registrations and removals wait until the block exits.
        """
        with self._pool_lock:
            yield list(self._pool.values())

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def names(self) -> Set[str]:
        """Snapshot of the claimed chat names."""
        with self._names_lock:
            return set(self._names)

    def name_of(self, conn: Connection) -> Optional[str]:
        with self._pool_lock:
            subscriber = self._pool.get(conn)
        return subscriber.name if subscriber else None

    def __contains__(self, conn: Connection) -> bool:
        with self._pool_lock:
            return conn in self._pool

    def __len__(self) -> int:
        with self._pool_lock:
            return len(self._pool)

    def close_all(self) -> int:
        """
        Remove and close every registered connection (used on shutdown).

        Returns:
            Number of connections closed.
        """
        with self._pool_lock:
            connections = list(self._pool)

        for conn in connections:
            self.remove(conn)
            conn.close()
        return len(connections)
