"""Logging setup for s3courier.

Modules log through ``logging.getLogger(__name__)`` and never install
handlers themselves.  Applications call :func:`configure_logging` to attach
one handler to the ``s3courier`` logger, as text lines or single-line JSON.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

PACKAGE_LOGGER = "s3courier"

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Request context set by the transport and the transfer engine.
_EXTRA_KEYS = (
    "operation",
    "method",
    "bucket",
    "key",
    "status",
    "duration_ms",
    "upload_id",
    "part_number",
)


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus whichever request extras
    are set on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    level: str = "INFO", fmt: str = "text", stream: TextIO | None = None
) -> logging.Handler:
    """Attach a single handler to the ``s3courier`` logger.

    A handler installed by an earlier call is replaced.  Handlers the
    application placed on other loggers are left alone, and the package
    logger stops propagating so records are not emitted twice.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        fmt: 'text' for human-readable lines, 'json' for structured output.
        stream: Destination stream; ``sys.stderr`` when omitted.

    Returns:
        The installed handler.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    numeric_level = _level(level)
    logger.setLevel(numeric_level)
    for existing in logger.handlers[:]:
        logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return handler
