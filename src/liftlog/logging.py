"""Structured logging for liftlog.

``LIFTLOG_LOG_FORMAT`` picks the output: one JSON object per line ("json",
the default) or a human-readable line ("text"). Modules pass structured
context as ``extra={"liftlog_<name>": value}``; both formats render it.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import IO, Any

LOG_FORMATS = ("json", "text")
EXTRA_PREFIX = "liftlog_"


def structured_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k.startswith(EXTRA_PREFIX)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with liftlog extras as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
        }
        entry.update(structured_extras(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain log line followed by ``key=value`` pairs for any liftlog extras."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = structured_extras(record)
        if not extras:
            return line
        pairs = " ".join(f"{k[len(EXTRA_PREFIX):]}={v}" for k, v in sorted(extras.items()))
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(
    log_format: str,
    level: int = logging.INFO,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Replace the root logger's handlers with a single liftlog handler."""
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log format must be one of {', '.join(LOG_FORMATS)}, got {log_format!r}")

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)
    return handler
