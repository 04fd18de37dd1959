"""Shared fixtures: an in-memory job store and test settings."""

from __future__ import annotations

import dataclasses
from typing import Any

import pytest

from quickscribe.config import Settings
from quickscribe.storage.models import Job, JobStatus
from quickscribe.utils.errors import JobConflictError, StorageError


class FakeJobStore:
    """In-memory stand-in for JobStore with the same async interface.

    Every update is recorded in `updates` as (job_id, fields) so tests can
    assert on the exact sequence of writes.
    """

    def __init__(self, jobs: list[Job] | None = None) -> None:
        self.jobs: dict[str, Job] = {job.id: job for job in jobs or []}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_on_status: set[JobStatus] = set()
        self._next_id = 1

    async def create(self, owner_id: str, metadata: dict[str, Any]) -> Job:
        job = Job(
            id=f"job-{self._next_id}",
            owner_id=owner_id,
            status=JobStatus.PENDING,
            source_file_url=metadata["source_file_url"],
            source_file_name=metadata.get("source_file_name", ""),
            engine_used=metadata["engine_used"],
            source_file_size=metadata.get("source_file_size", 0),
            source_file_hash=metadata.get("source_file_hash"),
            created_at="2026-01-01T00:00:00+00:00",
        )
        self._next_id += 1
        self.jobs[job.id] = job
        return dataclasses.replace(job)

    async def find_by_id(self, job_id: str, owner_id: str | None = None) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None or (owner_id and job.owner_id != owner_id):
            return None
        return dataclasses.replace(job)

    async def update(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | None = None,
    ) -> Job:
        job = self.jobs[job_id]
        if updates.get("status") in self.fail_on_status:
            raise StorageError("Job store update failed: HTTP 500", job_id=job_id)
        if expected_status is not None and job.status is not expected_status:
            raise JobConflictError(f"Job {job_id} is no longer {expected_status.value}")
        self.updates.append((job_id, dict(updates)))
        for name, value in updates.items():
            setattr(job, name, value)
        return dataclasses.replace(job)

    def statuses(self, job_id: str) -> list[JobStatus]:
        """Statuses written for a job, in order."""
        return [
            fields["status"]
            for updated_id, fields in self.updates
            if updated_id == job_id and "status" in fields
        ]


def make_job(**overrides: Any) -> Job:
    """Create a PENDING file job with sensible defaults."""
    values: dict[str, Any] = {
        "id": "job-123",
        "owner_id": "user-1",
        "status": JobStatus.PENDING,
        "source_file_url": "https://blobs.example.com/uploads/user-1/abc-talk.mp4",
        "source_file_name": "talk.mp4",
        "engine_used": "chill",
        "source_file_size": 1024,
        "source_file_hash": "deadbeef",
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    values.update(overrides)
    return Job(**values)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        groq_api_key="groq-key",
        blob_endpoint="https://storage.example.com",
        blob_bucket="uploads",
        job_store_url="https://app.example.com",
        job_store_secret="secret",
        extraction_timeout_seconds=60,
        download_timeout_seconds=60,
    )


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore([make_job()])
