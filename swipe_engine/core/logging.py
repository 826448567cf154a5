"""
Logging for batch passes.

Passes attach their counters through `extra={}`. In JSON mode
(LOG_JSON=true) each record becomes one line with a fixed envelope:

    {"ts": ..., "level": ..., "logger": ..., "task": "clustering-tick",
     "msg": ..., "pass": {"entity_type": "post", "total_items": 120, ...}}

Known pass counters always land under "pass", in a fixed key order, so
dashboards can query them without guessing. Unknown extras go under
"extra". `task` is the asyncio task name, which tells the initial run
of a timer apart from its later ticks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

PASS_FIELDS = (
    "entity_type",
    "total_items",
    "dimensions",
    "noise_count",
    "processing_time_ms",
    "processed",
    "succeeded",
    "failed",
    "duration_ms",
)

# Attributes every LogRecord has, plus the one TaskNameFilter adds.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "task"}


class TaskNameFilter(logging.Filter):
    """Stamp `record.task` with the current asyncio task name, or "-"."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task = task.get_name() if task is not None else "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "task": getattr(record, "task", "-"),
            "msg": record.getMessage(),
        }

        pass_fields = {k: getattr(record, k) for k in PASS_FIELDS if hasattr(record, k)}
        if pass_fields:
            log_obj["pass"] = pass_fields
        extra = {
            k: v for k, v in vars(record).items()
            if k not in _RECORD_ATTRS and k not in PASS_FIELDS
        }
        if extra:
            log_obj["extra"] = extra

        if record.exc_info:
            log_obj["exc"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TaskNameFilter())
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(task)-18s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    # Timer sleeps and per-request access lines are not interesting here.
    for noisy in ("asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
