from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# extra_data keys promoted to top-level fields so log queries can filter on them
_PROMOTED_KEYS = ("appraisal_id", "comparable_id")

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def get_correlation_id() -> str:
    cid = correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:12]
        correlation_id.set(cid)
    return cid


class JSONFormatter(logging.Formatter):
    """One JSON object per line; engine context passed via extra={"extra_data": {...}}."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id.get(""),
        }
        data = getattr(record, "extra_data", None)
        if isinstance(data, dict):
            for key in _PROMOTED_KEYS:
                if key in data:
                    entry[key] = data[key]
            entry["data"] = data
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        cid = correlation_id.get("")
        return f"{line} cid={cid}" if cid else line


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    root.addHandler(handler)

    # request lines are already covered by the correlation-id middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
