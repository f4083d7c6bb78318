"""
=============================================================================
MESSENGER CONFIGURATION
=============================================================================

Centralized configuration for the relay, kept in one dataclass so every
component reads the same values and validation happens once at startup.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    1. Defaults        MessengerConfig()
    2. Environment     MessengerConfig.from_env()
    3. Command line    python -m tcpmessenger --port 9000  (see __main__.py)

=============================================================================
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional


DEFAULT_PORT = 8033

LOG_FORMATS = ("text", "json")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MessengerConfig:
    """
    Configuration for the messenger.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, idle_timeout

    PROTOCOL SETTINGS
    - max_line_length, pipeline_size, release_names

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    - "0.0.0.0" - All IPv4 interfaces
    - "127.0.0.1" - Localhost only (tests, development)
    """

    port: int = DEFAULT_PORT
    """
    The port number to listen on. 0 lets the OS pick a free port;
    Messenger.address reports the one actually bound.
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 4096
    """Bytes requested per recv() call."""

    idle_timeout: Optional[float] = None
    """
    Read deadline in seconds applied to every client socket.
    None = no deadline; a connection only ends on I/O error or close.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_line_length: int = 64 * 1024
    """
    Longest accepted input line in bytes. A client exceeding it is treated
    as a failed connection.
    """

    pipeline_size: int = 1
    """
    Capacity of the message pipeline.
    1 = single slot, producers block as soon as the broadcaster falls behind
    0 = unbounded, producers never block
    """

    release_names: bool = True
    """
    Release a chat participant's display name when their connection is
    removed. False keeps every claimed name reserved for the process lifetime.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)."""

    log_format: str = "text"
    """Log format: 'text' for humans, 'json' for log aggregators."""

    @classmethod
    def from_env(cls) -> "MessengerConfig":
        """
        Create configuration from environment variables.

        MESSENGER_HOST           Bind address (default: 0.0.0.0)
        MESSENGER_PORT           Listening port (default: 8033)
        MESSENGER_LOG_LEVEL      Logging level (default: INFO)
        MESSENGER_LOG_FORMAT     text or json (default: text)
        MESSENGER_PIPELINE_SIZE  Pipeline capacity (default: 1)
        MESSENGER_RELEASE_NAMES  Release chat names on disconnect (default: true)
        MESSENGER_IDLE_TIMEOUT   Read deadline in seconds (default: none)
        """
        idle_timeout = os.getenv("MESSENGER_IDLE_TIMEOUT")
        return cls(
            host=os.getenv("MESSENGER_HOST", "0.0.0.0"),
            port=int(os.getenv("MESSENGER_PORT", str(DEFAULT_PORT))),
            log_level=os.getenv("MESSENGER_LOG_LEVEL", "INFO"),
            log_format=os.getenv("MESSENGER_LOG_FORMAT", "text"),
            pipeline_size=int(os.getenv("MESSENGER_PIPELINE_SIZE", "1")),
            release_names=_env_bool("MESSENGER_RELEASE_NAMES", True),
            idle_timeout=float(idle_timeout) if idle_timeout else None,
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by Messenger.__init__ so a bad value fails at startup rather
        than on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 256:
            raise ValueError("buffer_size must be >= 256")

        if self.max_line_length < 1:
            raise ValueError("max_line_length must be >= 1")

        if self.pipeline_size < 0:
            raise ValueError("pipeline_size must be >= 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
