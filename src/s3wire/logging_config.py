"""Logging setup for s3wire applications.

The library itself only emits records on ``s3wire.*`` loggers and never
installs handlers; ``configure_logging`` is for entry points such as the
CLI.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Request context the client attaches via ``extra=``.
REQUEST_FIELDS = ("method", "bucket", "object", "status", "request_id")

# Transport loggers that log every request at INFO/DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp (UTC, ISO 8601), level, logger, message, exception when
    one is attached, and whichever of ``REQUEST_FIELDS`` the record carries.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (name, getattr(record, name))
            for name in REQUEST_FIELDS
            if getattr(record, name, None) is not None
        )
        return json.dumps(entry, default=str)


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Send all records at ``level`` and above to stderr.

    Replaces any handlers already on the root logger. Unless ``level`` is
    DEBUG, the httpx and httpcore loggers are held at WARNING so request
    lines come only from s3wire.

    Args:
        level: Log level name; unknown names mean INFO.
        fmt: 'text' for human-readable lines or 'json' for JSONFormatter.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(_formatter(fmt))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    transport_level = logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
