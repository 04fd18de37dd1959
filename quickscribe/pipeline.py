"""process_job() orchestrator: the job state machine.

PENDING -> PROCESSING -> COMPLETED | FAILED.
Orchestrates: claim -> fetch or download -> extract -> transcribe ->
captions -> title -> persist, then deletes the uploaded source blob.

A trigger for a job that has already left PENDING is a no-op, so
redelivered triggers are safe.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import tempfile
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from quickscribe.asr.captions import generate_srt, generate_vtt
from quickscribe.asr.interface import TranscriptionEngine, TranscriptionMode
from quickscribe.asr.registry import get_engine, parse_mode
from quickscribe.asr.titles import DEFAULT_TITLE, TitleGenerator
from quickscribe.audio.download import download_link
from quickscribe.audio.transcode import extract_audio
from quickscribe.config import Settings
from quickscribe.observability.logger import job_context
from quickscribe.observability.metrics import (
    JobMetrics,
    StageTimer,
    failed_stage,
    log_job_metrics,
)
from quickscribe.storage.blob_client import BlobClient, is_retryable_storage_error
from quickscribe.storage.job_store import JobStore, utc_now
from quickscribe.storage.models import Job, JobStatus
from quickscribe.utils.errors import JobConflictError, JobNotFoundError, PipelineError
from quickscribe.utils.retry import with_retry

logger = logging.getLogger(__name__)

SOURCE_BASENAME = "source"
AUDIO_FILENAME = "audio.opus"


@dataclass
class ProcessingError:
    """Details about a processing failure."""

    stage: str
    message: str
    exception_type: str


@dataclass
class ProcessingResult:
    """Result of handling a single trigger."""

    status: Literal["completed", "failed", "skipped"]
    job_id: str
    metrics: JobMetrics | None = None
    error: ProcessingError | None = None

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"


def describe_error(exc: BaseException) -> str:
    """Turn an exception into the errorMessage stored on a failed job.

    Typed pipeline errors carry a message written for users; anything
    else is reported as an unknown error with its raw text. Never empty.
    """
    if isinstance(exc, PipelineError) and exc.message:
        return exc.message
    text = str(exc).strip() or type(exc).__name__
    return f"Unknown error: {text}"


async def process_job(
    job_id: str,
    is_link_job: bool,
    job_store: JobStore,
    blob_client: BlobClient,
    engines: Mapping[TranscriptionMode, TranscriptionEngine],
    settings: Settings,
    title_generator: TitleGenerator | None = None,
) -> ProcessingResult:
    """Process one transcription job end to end.

    Args:
        job_id: Job to process.
        is_link_job: True when source_file_url is a user-submitted link,
            False when it is an uploaded blob.
        job_store: Job persistence gateway.
        blob_client: Object storage holding uploaded files.
        engines: Transcription engines by mode (see build_engines()).
        settings: Runtime configuration (timeouts).
        title_generator: Optional title generator. Without it the default
            title is stored.

    Returns:
        ProcessingResult. Failures after the job was claimed are recorded
        on the job and reported here instead of being raised.

    Raises:
        JobNotFoundError: If the job does not exist.
        StorageError: If the job cannot be read or claimed.
    """
    job = await job_store.find_by_id(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    if not await _claim(job, job_store):
        return ProcessingResult(status="skipped", job_id=job_id)

    logger.info(
        "Processing job %s (mode=%s, link=%s)",
        job_id,
        job.engine_used,
        is_link_job,
        extra=job_context(job, is_link_job=is_link_job),
    )

    wall_start = time.monotonic()
    metrics = JobMetrics(
        job_id=job_id,
        status="processing",
        engine=job.engine_used,
        is_link_job=is_link_job,
        processing_wall_time_seconds=0.0,
    )

    try:
        await _run_stages(
            job=job,
            is_link_job=is_link_job,
            job_store=job_store,
            blob_client=blob_client,
            engines=engines,
            settings=settings,
            title_generator=title_generator,
            metrics=metrics,
        )
    except Exception as exc:
        error = await _record_failure(job, exc, job_store, metrics)
        return ProcessingResult(
            status="failed", job_id=job_id, metrics=metrics, error=error
        )
    finally:
        if not is_link_job:
            await _delete_source(blob_client, job)
        metrics.processing_wall_time_seconds = time.monotonic() - wall_start
        log_job_metrics(metrics)

    logger.info(
        "Job %s completed",
        job_id,
        extra=job_context(job, is_link_job=is_link_job),
    )
    return ProcessingResult(status="completed", job_id=job_id, metrics=metrics)


async def _claim(job: Job, job_store: JobStore) -> bool:
    """Move a PENDING job to PROCESSING. False if it is not ours to process."""
    if job.status is not JobStatus.PENDING:
        logger.info(
            "Job %s is already %s, skipping",
            job.id,
            job.status.value,
            extra={"job_id": job.id},
        )
        return False

    try:
        await job_store.update(
            job.id,
            {"status": JobStatus.PROCESSING, "started_at": utc_now()},
            expected_status=JobStatus.PENDING,
        )
    except JobConflictError:
        logger.info(
            "Job %s was claimed concurrently, skipping",
            job.id,
            extra={"job_id": job.id},
        )
        return False
    return True


async def _run_stages(
    job: Job,
    is_link_job: bool,
    job_store: JobStore,
    blob_client: BlobClient,
    engines: Mapping[TranscriptionMode, TranscriptionEngine],
    settings: Settings,
    title_generator: TitleGenerator | None,
    metrics: JobMetrics,
) -> None:
    """Execute the pipeline stages. Raises on failure."""
    timings = metrics.stage_timings
    loop = asyncio.get_running_loop()

    with tempfile.TemporaryDirectory(prefix=f"quickscribe-{job.id}-") as scratch_dir:
        if is_link_job:
            with StageTimer("download", timings):
                source_path = await download_link(
                    job.source_file_url,
                    scratch_dir,
                    timeout=settings.download_timeout_seconds,
                    basename=SOURCE_BASENAME,
                )
        else:
            with StageTimer("fetch", timings):
                source_data = await _fetch_source(blob_client, job.source_file_url)
                source_path = _write_source_file(
                    scratch_dir, job.source_file_name, source_data
                )

        with StageTimer("extract", timings):
            extraction = await loop.run_in_executor(
                None,
                functools.partial(
                    extract_audio,
                    source_path,
                    scratch_dir,
                    timeout=settings.extraction_timeout_seconds,
                    output_filename=AUDIO_FILENAME,
                ),
            )
        metrics.source_size_bytes = extraction.source_size_bytes
        metrics.audio_size_bytes = extraction.output_size_bytes

        with StageTimer("transcribe", timings):
            mode = parse_mode(job.engine_used)
            engine = get_engine(engines, mode)
            transcription = await engine.transcribe(extraction.output_path, mode)

    metrics.audio_duration_seconds = transcription.duration or 0.0
    metrics.transcript_chars = len(transcription.text)
    metrics.segment_count = len(transcription.segments)

    with StageTimer("captions", timings):
        srt = generate_srt(transcription.segments)
        vtt = generate_vtt(transcription.segments)

    with StageTimer("title", timings):
        title = await _generate_title(job, title_generator, transcription.text)

    with StageTimer("persist", timings):
        await job_store.update(
            job.id,
            {
                "status": JobStatus.COMPLETED,
                "transcript_text": transcription.text,
                "transcript_srt": srt,
                "transcript_vtt": vtt,
                "language": transcription.language,
                "duration": transcription.duration,
                "title": title,
                "completed_at": utc_now(),
            },
            expected_status=JobStatus.PROCESSING,
        )
    metrics.status = "completed"


async def _record_failure(
    job: Job, exc: Exception, job_store: JobStore, metrics: JobMetrics
) -> ProcessingError:
    """Persist FAILED with a readable message; never raises."""
    stage = failed_stage(metrics.stage_timings) or "init"
    message = describe_error(exc)

    logger.error(
        "Job %s failed at stage '%s': %s",
        job.id,
        stage,
        message,
        exc_info=True,
        extra=job_context(job, stage=stage, error=message),
    )

    metrics.status = "failed"
    metrics.error_stage = stage
    metrics.error_message = message

    try:
        await job_store.update(
            job.id,
            {
                "status": JobStatus.FAILED,
                "error_message": message,
                "completed_at": utc_now(),
            },
            expected_status=JobStatus.PROCESSING,
        )
    except Exception:
        logger.error(
            "Failed to record failure for job %s",
            job.id,
            exc_info=True,
            extra={"job_id": job.id},
        )

    return ProcessingError(
        stage=stage, message=message, exception_type=type(exc).__name__
    )


async def _generate_title(
    job: Job, title_generator: TitleGenerator | None, text: str
) -> str:
    """Title for a finished transcript. Failures never fail the job."""
    if title_generator is None:
        return DEFAULT_TITLE
    try:
        return await title_generator.generate(text) or DEFAULT_TITLE
    except Exception:
        logger.warning(
            "Title generation failed for job %s, using default",
            job.id,
            exc_info=True,
            extra=job_context(job, stage="title"),
        )
        return DEFAULT_TITLE


def _write_source_file(scratch_dir: str, source_file_name: str, data: bytes) -> str:
    """Write fetched bytes to the scratch dir, keeping only the extension."""
    extension = os.path.splitext(source_file_name)[1].lower()
    path = os.path.join(scratch_dir, f"{SOURCE_BASENAME}{extension}")
    with open(path, "wb") as f:
        f.write(data)
    return path


async def _delete_source(blob_client: BlobClient, job: Job) -> None:
    """Best-effort removal of the uploaded source file."""
    try:
        await _delete_blob(blob_client, job.source_file_url)
    except Exception:
        logger.error(
            "Failed to delete source blob for job %s",
            job.id,
            exc_info=True,
            extra=job_context(job, stage="cleanup"),
        )


@with_retry(max_retries=3, initial_backoff=1.0, is_retryable=is_retryable_storage_error)
async def _fetch_source(blob_client: BlobClient, url: str) -> bytes:
    """Fetch an uploaded file from object storage with retry."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, blob_client.fetch, url)


@with_retry(max_retries=2, initial_backoff=1.0, is_retryable=is_retryable_storage_error)
async def _delete_blob(blob_client: BlobClient, url: str) -> None:
    """Delete an uploaded file from object storage with retry."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, blob_client.delete, url)
