"""Logging setup and the JSON log formatter.

Output schema per line when structured logging is enabled::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "feed_engine.pipeline.runner",
        "message": "Stage Configuration completed",
        "job_id": 1,               // present when passed via ``extra``
        "execution_id": 42,        // present when passed via ``extra``
        "stage": "Configuration",  // present when passed via ``extra``
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import Any

_CONTEXT_FIELDS = ("job_id", "execution_id", "stage")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Install a single stderr handler on the ``feed_engine`` logger tree.

    Calling this more than once replaces the previously installed handler
    rather than stacking duplicates.
    """
    root = logging.getLogger("feed_engine")
    for handler in list(root.handlers):
        if getattr(handler, "_feed_engine_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._feed_engine_handler = True  # type: ignore[attr-defined]
    if structured:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root.addHandler(handler)
    root.setLevel(level.upper())
