"""Per-job processing metrics.

JobMetrics is emitted once per processed job by log_job_metrics() as a
single JSON line on stdout, alongside the regular structured logs.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class JobMetrics:
    """All metrics collected for a single job run."""

    job_id: str
    status: str
    engine: str
    is_link_job: bool
    processing_wall_time_seconds: float
    source_size_bytes: int = 0
    audio_size_bytes: int = 0
    audio_duration_seconds: float = 0.0
    transcript_chars: int = 0
    segment_count: int = 0
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_stage: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records the wall-clock duration of a stage.

    Successful stages are stored under their name in the timings dict;
    a stage that raises is stored as "_<name>_failed" so the failing
    stage can be identified afterwards.

    Usage:
        timings = {}
        with StageTimer("extract", timings):
            do_work()
    """

    def __init__(self, stage_name: str, timings: dict[str, float]) -> None:
        self.stage_name = stage_name
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        if exc_type is not None:
            self._timings[f"_{self.stage_name}_failed"] = self.duration_seconds
        else:
            self._timings[self.stage_name] = self.duration_seconds


def failed_stage(timings: dict[str, float]) -> str | None:
    """Return the name of the stage recorded as failed, if any."""
    for key in timings:
        if key.startswith("_") and key.endswith("_failed"):
            return key[1 : -len("_failed")]
    return None


def log_job_metrics(metrics: JobMetrics) -> None:
    """Emit job metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated JobMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "job_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry), flush=True)
