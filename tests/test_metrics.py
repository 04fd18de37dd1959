"""Tests for quickscribe.observability.metrics module."""

from __future__ import annotations

import json
import time
from dataclasses import asdict

import pytest

from quickscribe.observability.metrics import (
    JobMetrics,
    StageTimer,
    failed_stage,
    log_job_metrics,
)


def _make_job_metrics(**overrides) -> JobMetrics:
    """Create a JobMetrics with sensible defaults, applying any overrides."""
    defaults = {
        "job_id": "job-001",
        "status": "completed",
        "engine": "chill",
        "is_link_job": False,
        "processing_wall_time_seconds": 12.5,
        "source_size_bytes": 5_000_000,
        "audio_size_bytes": 400_000,
        "audio_duration_seconds": 600.0,
        "transcript_chars": 9000,
        "segment_count": 120,
        "stage_timings": {"fetch": 0.4, "extract": 2.1, "transcribe": 9.0},
    }
    defaults.update(overrides)
    return JobMetrics(**defaults)


class TestJobMetrics:
    def test_error_fields_default_to_none(self):
        d = asdict(_make_job_metrics())
        assert d["error_stage"] is None
        assert d["error_message"] is None
        assert d["stage_timings"]["extract"] == 2.1

    def test_stage_timings_not_shared_between_instances(self):
        a = JobMetrics("a", "processing", "chill", False, 0.0)
        b = JobMetrics("b", "processing", "chill", False, 0.0)
        a.stage_timings["fetch"] = 1.0
        assert b.stage_timings == {}


class TestLogJobMetrics:
    def test_output_is_valid_json_with_envelope_fields(self, capsys):
        log_job_metrics(_make_job_metrics())

        parsed = json.loads(capsys.readouterr().out.strip())

        assert "timestamp" in parsed
        assert parsed["severity"] == "INFO"
        assert parsed["metric_type"] == "job_completion"

    def test_output_contains_all_fields(self, capsys):
        metrics = _make_job_metrics(
            status="failed", error_stage="transcribe", error_message="Groq is down"
        )
        log_job_metrics(metrics)

        parsed = json.loads(capsys.readouterr().out.strip())

        for key in asdict(metrics):
            assert key in parsed, f"Missing key: {key}"
        assert parsed["error_stage"] == "transcribe"


class TestStageTimer:
    def test_records_successful_stage(self):
        timings: dict[str, float] = {}
        with StageTimer("extract", timings) as timer:
            time.sleep(0.01)

        assert timer.duration_seconds > 0.0
        assert timings == {"extract": timer.duration_seconds}

    def test_failed_stage_is_marked(self):
        timings: dict[str, float] = {"fetch": 0.1}
        with pytest.raises(ValueError, match="boom"):
            with StageTimer("extract", timings):
                raise ValueError("boom")

        assert "extract" not in timings
        assert "_extract_failed" in timings
        assert failed_stage(timings) == "extract"

    def test_no_failed_stage(self):
        assert failed_stage({"fetch": 0.1, "extract": 0.2}) is None
        assert failed_stage({}) is None
