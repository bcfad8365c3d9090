"""Logging setup.

Events are logged as snake_case names with their fields passed through
``extra={...}``.  ``EventFormatter`` appends those fields to the line as
``key=value`` pairs so they survive the plain text format.
"""

import logging
import sys

from mediasync.core.config import settings

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

_QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "apscheduler", "uvicorn.access")


class EventFormatter(logging.Formatter):
    """Text formatter that renders ``extra`` fields after the event name."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if not fields:
            return line
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        return f"{line} | {rendered}"


def setup_logging() -> None:
    """Install one stdout handler on the root logger at ``settings.LOG_LEVEL``."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        EventFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    # uvicorn may have installed its own
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
