"""Job store gateway.

Persists transcription jobs by calling the internal jobs API exposed by
the web application, which owns the relational database. No business
logic lives here; callers decide which fields change and when.
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

from quickscribe.storage.models import Job, JobStatus, to_wire_fields
from quickscribe.utils.errors import JobConflictError, StorageError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat()


class JobStore:
    """Client for job persistence via the internal jobs API.

    Reads configuration from environment variables when not passed:
        JOB_STORE_URL, JOB_STORE_SECRET
    """

    def __init__(
        self,
        base_url: str | None = None,
        internal_secret: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = (base_url or os.environ.get("JOB_STORE_URL", "")).rstrip("/")
        self.internal_secret = internal_secret or os.environ.get(
            "JOB_STORE_SECRET", ""
        )

        if not self.base_url:
            raise StorageError("JOB_STORE_URL is required", operation="init")
        if not self.internal_secret:
            raise StorageError("JOB_STORE_SECRET is required", operation="init")

        self._client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for the internal API."""
        return {
            "X-Internal-Secret": self.internal_secret,
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        job_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, converting transport failures to StorageError.

        Non-2xx statuses are returned to the caller, which decides which
        ones are errors.
        """
        try:
            return await self._client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                **kwargs,
            )
        except httpx.RequestError as exc:
            raise StorageError(
                f"Job store {operation} failed: {exc}",
                job_id=job_id,
                operation=operation,
            ) from exc

    @staticmethod
    def _raise_for_status(
        response: httpx.Response, operation: str, job_id: str | None = None
    ) -> None:
        if response.is_success:
            return
        raise StorageError(
            f"Job store {operation} failed: HTTP {response.status_code}",
            job_id=job_id,
            operation=operation,
        )

    @staticmethod
    def _parse_job(response: httpx.Response, operation: str) -> Job:
        try:
            return Job.from_record(response.json())
        except ValueError as exc:
            raise StorageError(
                f"Job store {operation} returned an invalid job record: {exc}",
                operation=operation,
            ) from exc

    async def create(self, owner_id: str, metadata: dict[str, Any]) -> Job:
        """Create a PENDING job for an owner.

        Args:
            owner_id: Owning user identifier.
            metadata: source_file_url, source_file_name, source_file_size,
                source_file_hash and engine_used.

        Returns:
            The persisted Job.

        Raises:
            StorageError: If the API call fails.
        """
        job = Job(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            status=JobStatus.PENDING,
            source_file_url=metadata["source_file_url"],
            source_file_name=metadata.get("source_file_name", ""),
            engine_used=metadata["engine_used"],
            source_file_size=metadata.get("source_file_size", 0),
            source_file_hash=metadata.get("source_file_hash"),
            created_at=utc_now(),
        )
        response = await self._send(
            "POST", "/internal/jobs", "create", job.id, json=job.to_record()
        )
        self._raise_for_status(response, "create", job.id)
        return self._parse_job(response, "create")

    async def find_by_id(self, job_id: str, owner_id: str | None = None) -> Job | None:
        """Fetch a job, optionally scoped to an owner.

        Returns:
            The Job, or None if it does not exist (or belongs to someone else).
        """
        params = {"ownerId": owner_id} if owner_id else None
        response = await self._send(
            "GET", f"/internal/jobs/{job_id}", "find_by_id", job_id, params=params
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "find_by_id", job_id)
        return self._parse_job(response, "find_by_id")

    async def update(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | None = None,
    ) -> Job:
        """Apply a partial update atomically.

        Args:
            job_id: Job to update.
            updates: Attribute names (e.g. "status", "error_message") to values.
            expected_status: When set, the update only applies if the job
                currently has this status.

        Returns:
            The updated Job.

        Raises:
            JobConflictError: If expected_status did not match.
            StorageError: If the API call fails.
        """
        payload: dict[str, Any] = {"fields": to_wire_fields(updates)}
        if expected_status is not None:
            payload["expectedStatus"] = expected_status.value

        response = await self._send(
            "PATCH", f"/internal/jobs/{job_id}", "update", job_id, json=payload
        )
        if response.status_code == 409:
            expected = expected_status.value if expected_status else "updatable"
            raise JobConflictError(
                f"Job {job_id} is no longer {expected}",
                job_id=job_id,
                operation="update",
            )
        self._raise_for_status(response, "update", job_id)
        return self._parse_job(response, "update")

    async def list_by_owner(self, owner_id: str) -> list[Job]:
        """List an owner's jobs, newest first as returned by the API."""
        response = await self._send(
            "GET", "/internal/jobs", "list_by_owner", params={"ownerId": owner_id}
        )
        self._raise_for_status(response, "list_by_owner")
        try:
            return [Job.from_record(item) for item in response.json().get("jobs", [])]
        except (ValueError, AttributeError) as exc:
            raise StorageError(
                f"Job store list_by_owner returned invalid records: {exc}",
                operation="list_by_owner",
            ) from exc

    async def delete(self, job_id: str) -> None:
        """Delete a job. Deleting a missing job is not an error."""
        response = await self._send(
            "DELETE", f"/internal/jobs/{job_id}", "delete", job_id
        )
        if response.status_code == 404:
            logger.info("Job %s already deleted", job_id)
            return
        self._raise_for_status(response, "delete", job_id)
