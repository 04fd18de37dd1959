"""Structured JSON logging for the worker.

Every record becomes one JSON line carrying severity, the message and
whatever job context the caller attached through `extra`. Use
job_context() to build that dict from a Job so every stage logs the same
keys.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from quickscribe.storage.models import Job
from quickscribe.utils.errors import PipelineError

CONTEXT_FIELDS = (
    "job_id",
    "owner_id",
    "engine",
    "is_link_job",
    "stage",
    "attempt",
    "duration_seconds",
    "error",
)

# Python's level names differ from the severities log collectors expect
_SEVERITIES = {"WARNING": "WARNING", "CRITICAL": "CRITICAL", "NOTSET": "DEFAULT"}


def job_context(job: Job, is_link_job: bool | None = None, **fields: Any) -> dict[str, Any]:
    """Logging `extra` for a job: id, owner and engine plus any stage fields."""
    context: dict[str, Any] = {
        "job_id": job.id,
        "owner_id": job.owner_id,
        "engine": job.engine_used,
    }
    if is_link_job is not None:
        context["is_link_job"] = is_link_job
    context.update(fields)
    return context


class StructuredJsonFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, object] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.")
            + f"{created.microsecond // 1000:03d}Z",
            "severity": _SEVERITIES.get(record.levelname, record.levelname),
            "message": record.getMessage(),
            "logger": record.name,
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = exc.message if isinstance(exc, PipelineError) else str(exc)
            entry["exception_type"] = type(exc).__name__
            if isinstance(exc, PipelineError) and exc.retryable:
                entry["retryable"] = True

        return json.dumps(entry, default=str)


def build_handler(stream: TextIO | None = None) -> logging.Handler:
    """StreamHandler writing JSON lines (stdout unless a stream is given)."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    return handler


def configure_logging(level: int = logging.INFO) -> None:
    """Send every logger's output through one JSON handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        if isinstance(existing.formatter, StructuredJsonFormatter):
            root.removeHandler(existing)
    root.addHandler(build_handler())
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
