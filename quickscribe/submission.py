"""Job submission: create PENDING jobs and publish their triggers.

Used by the web tier after a file has been uploaded to object storage,
or when a user submits a link. Also hosts the owner-scoped entry points
for reading a job and running AI tasks over its transcript.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid

from quickscribe.asr.interaction import InteractionResult, TranscriptInteraction
from quickscribe.asr.registry import parse_mode
from quickscribe.audio.download import validate_link
from quickscribe.queue.publisher import TriggerPublisher
from quickscribe.storage.blob_client import BlobClient
from quickscribe.storage.job_store import JobStore, utc_now
from quickscribe.storage.models import Job, JobStatus
from quickscribe.utils.errors import InteractionError

logger = logging.getLogger(__name__)

ENQUEUE_FAILED_MESSAGE = "Failed to queue the job for processing."


def compute_file_hash(data: bytes) -> str:
    """SHA-256 hex digest of an uploaded file."""
    return hashlib.sha256(data).hexdigest()


def upload_source_file(
    blob_client: BlobClient,
    owner_id: str,
    file_name: str,
    data: bytes,
    content_type: str = "",
) -> str:
    """Store an uploaded media file and return its blob URL.

    Keys are "uploads/<owner>/<random>-<basename>" so that uploads never
    collide, even for identical file names.
    """
    basename = os.path.basename(file_name) or "upload"
    key = f"uploads/{owner_id}/{uuid.uuid4().hex}-{basename}"
    return blob_client.upload(key, data, content_type)


async def submit_file_job(
    job_store: JobStore,
    publisher: TriggerPublisher,
    owner_id: str,
    blob_url: str,
    file_name: str,
    file_size: int,
    file_hash: str,
    mode: str,
) -> Job:
    """Create a PENDING job for an uploaded file and trigger processing.

    Raises:
        ValueError: If owner_id is empty.
        UnknownTranscriptionError: If mode is not a known mode.
        StorageError: If the job cannot be created or enqueued.
    """
    if not owner_id:
        raise ValueError("owner_id is required")
    transcription_mode = parse_mode(mode)

    job = await job_store.create(
        owner_id,
        {
            "source_file_url": blob_url,
            "source_file_name": file_name,
            "source_file_size": file_size,
            "source_file_hash": file_hash,
            "engine_used": transcription_mode.value,
        },
    )
    await _publish(job_store, publisher, job, is_link_job=False)
    logger.info("Created file job %s", job.id, extra={"job_id": job.id})
    return job


async def submit_link_job(
    job_store: JobStore,
    publisher: TriggerPublisher,
    owner_id: str,
    link: str,
    mode: str,
) -> Job:
    """Create a PENDING job for a link and trigger processing.

    The link doubles as the job's source name; its size is unknown (0).

    Raises:
        ValueError: If owner_id is empty.
        DownloadError: If the link is malformed or a playlist.
        UnknownTranscriptionError: If mode is not a known mode.
        StorageError: If the job cannot be created or enqueued.
    """
    if not owner_id:
        raise ValueError("owner_id is required")
    link = validate_link(link)
    transcription_mode = parse_mode(mode)

    job = await job_store.create(
        owner_id,
        {
            "source_file_url": link,
            "source_file_name": link,
            "source_file_size": 0,
            "engine_used": transcription_mode.value,
        },
    )
    await _publish(job_store, publisher, job, is_link_job=True)
    logger.info("Created link job %s", job.id, extra={"job_id": job.id})
    return job


async def get_job(job_store: JobStore, job_id: str, owner_id: str) -> Job | None:
    """Owner-scoped read. Jobs of other owners are reported as absent."""
    if not owner_id:
        return None
    return await job_store.find_by_id(job_id, owner_id=owner_id)


async def interact_with_job(
    job_store: JobStore,
    interaction: TranscriptInteraction,
    job_id: str,
    owner_id: str,
    task: str,
    question: str | None = None,
) -> InteractionResult:
    """Run an AI task over the transcript of one of the owner's jobs.

    Raises:
        InteractionError: 404 if the job is not visible to the owner, 409 if
            it has no transcript yet, or any error from the interaction.
    """
    job = await get_job(job_store, job_id, owner_id)
    if job is None:
        raise InteractionError("Job not found.", status_code=404)
    if job.status is not JobStatus.COMPLETED or not job.transcript_text:
        raise InteractionError("The transcript is not ready yet.", status_code=409)

    logger.info(
        "Running AI task %s on job %s", task, job.id, extra={"job_id": job.id}
    )
    return await interaction.interact(job.transcript_text, task, question)


async def _publish(
    job_store: JobStore, publisher: TriggerPublisher, job: Job, is_link_job: bool
) -> None:
    """Publish the trigger; a job that cannot be enqueued is marked FAILED."""
    try:
        await publisher.publish(job.id, is_link_job)
    except Exception:
        logger.error(
            "Failed to enqueue job %s", job.id, exc_info=True, extra={"job_id": job.id}
        )
        await job_store.update(
            job.id,
            {
                "status": JobStatus.FAILED,
                "error_message": ENQUEUE_FAILED_MESSAGE,
                "completed_at": utc_now(),
            },
            expected_status=JobStatus.PENDING,
        )
        raise
