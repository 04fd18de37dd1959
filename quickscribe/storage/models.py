"""Job record model.

Job mirrors the persisted transcription job. to_record()/from_record()
convert to and from the wire layout read by dashboards and polling
clients, whose field names and status values must stay stable.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle status. Transitions only move forward."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Python attribute -> wire field
WIRE_FIELDS: dict[str, str] = {
    "id": "id",
    "owner_id": "ownerId",
    "status": "status",
    "source_file_url": "sourceFileUrl",
    "source_file_name": "sourceFileName",
    "source_file_size": "sourceFileSize",
    "source_file_hash": "sourceFileHash",
    "engine_used": "engineUsed",
    "transcript_text": "transcriptText",
    "transcript_srt": "transcriptSrt",
    "transcript_vtt": "transcriptVtt",
    "language": "language",
    "duration": "duration",
    "title": "title",
    "error_message": "errorMessage",
    "created_at": "createdAt",
    "started_at": "startedAt",
    "completed_at": "completedAt",
}


@dataclass
class Job:
    """A persisted transcription job."""

    id: str
    owner_id: str
    status: JobStatus
    source_file_url: str
    source_file_name: str
    engine_used: str
    source_file_size: int = 0
    source_file_hash: str | None = None
    transcript_text: str | None = None
    transcript_srt: str | None = None
    transcript_vtt: str | None = None
    language: str | None = None
    duration: float | None = None
    title: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Job:
        """Build a Job from a wire record.

        Raises:
            ValueError: If required fields are missing or the status is unknown.
        """
        values: dict[str, Any] = {}
        for attr, wire_name in WIRE_FIELDS.items():
            if wire_name in record:
                values[attr] = record[wire_name]

        for required in ("id", "owner_id", "status", "source_file_url"):
            if not values.get(required):
                raise ValueError(
                    f"Job record missing '{WIRE_FIELDS[required]}'"
                )

        values["status"] = JobStatus(values["status"])
        values.setdefault("source_file_name", "")
        values.setdefault("engine_used", "")
        values["source_file_size"] = values.get("source_file_size") or 0
        return cls(**values)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the wire layout, omitting unset optional fields."""
        record: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, JobStatus):
                value = value.value
            record[WIRE_FIELDS[f.name]] = value
        return record


def to_wire_fields(updates: dict[str, Any]) -> dict[str, Any]:
    """Translate a partial update keyed by attribute names to wire names."""
    wire: dict[str, Any] = {}
    for attr, value in updates.items():
        if attr not in WIRE_FIELDS:
            raise ValueError(f"Unknown job field: '{attr}'")
        if isinstance(value, JobStatus):
            value = value.value
        wire[WIRE_FIELDS[attr]] = value
    return wire
