"""
=============================================================================
STRUCTURED LOGGING
=============================================================================

The relay logs events, not sentences: a short fixed event name plus a set
of key/value fields. The same record renders two ways:

    TEXT FORMAT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 2024-06-10 10:55:36 [INFO] tcpmessenger.server: registered new chat │
    │ member conn=a1b2c3d4 address=127.0.0.1:51234 name=alice            │
    └─────────────────────────────────────────────────────────────────────┘

    JSON FORMAT (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"timestamp": "...", "level": "INFO", "logger": "tcpmessenger...",  │
    │  "event": "registered new chat member", "conn": "a1b2c3d4", ...}    │
    └─────────────────────────────────────────────────────────────────────┘

Fields travel through the standard logging machinery in the record's
`extra` dict, so handlers and filters configured by an embedding
application keep working.

=============================================================================
"""

import json
import logging
from typing import Any, Dict


ROOT_LOGGER = "tcpmessenger"

_HANDLER_NAME = "tcpmessenger-stream"


class StructuredLogger:
    """
    Thin adapter over logging.Logger taking an event plus keyword fields.

    Usage:
        log = get_logger(__name__)
        log.info("registered new consumer", conn=conn.id, address=conn.remote_address)
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, fields)

    def critical(self, event: str, **fields: Any) -> None:
        self._log(logging.CRITICAL, event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, event, fields, exc_info=True)

    def _log(self, level: int, event: str, fields: Dict[str, Any], exc_info: bool = False) -> None:
        if self._logger.isEnabledFor(level):
            # stacklevel=3 attributes the record to our caller, not this adapter
            self._logger.log(level, event, extra={"fields": fields}, exc_info=exc_info, stacklevel=3)


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for a module (pass __name__)."""
    return StructuredLogger(logging.getLogger(name))


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "fields", None) or {}


class TextFormatter(logging.Formatter):
    """Human readable: standard prefix, the event, then key=value pairs."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = _record_fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update(_record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Configure the package logger.

    Installs exactly one stream handler on the "tcpmessenger" logger;
    calling it again only swaps the level and formatter.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR).
        log_format: "text" or "json".

    Returns:
        The configured package logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(numeric_level)

    handler = next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        logger.addHandler(handler)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)

    # Records stop here; the embedding application's root handlers would
    # otherwise print every line twice.
    logger.propagate = False
    return logger
