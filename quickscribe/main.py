"""Worker entry point for the transcription pipeline.

Starts the QueueConsumer polling loop alongside a lightweight HTTP
health check server (the container platform requires a listening
port). Handles SIGTERM for graceful shutdown.
"""

import asyncio
import logging
import signal
import sys
from asyncio import StreamReader, StreamWriter

from quickscribe.asr.registry import build_engines
from quickscribe.asr.titles import TitleGenerator
from quickscribe.config import Settings
from quickscribe.observability.logger import configure_logging
from quickscribe.pipeline import process_job
from quickscribe.queue.consumer import DispatchFn, QueueConsumer
from quickscribe.storage.blob_client import BlobClient
from quickscribe.storage.job_store import JobStore
from quickscribe.utils.errors import ConfigError

logger = logging.getLogger(__name__)

# Leaves a buffer before the platform's SIGKILL at 30s
SHUTDOWN_TIMEOUT_SECONDS = 25


async def _health_handler(reader: StreamReader, writer: StreamWriter) -> None:
    """Minimal HTTP handler that returns 200 OK for liveness checks."""
    await reader.read(4096)
    response = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/plain\r\n"
        "Content-Length: 2\r\n"
        "\r\n"
        "ok"
    )
    writer.write(response.encode())
    await writer.drain()
    writer.close()


def build_dispatch(settings: Settings) -> tuple[DispatchFn, JobStore]:
    """Construct clients and engines once and bind them into a dispatch fn.

    Raises:
        StorageError: If storage clients cannot be configured.
        ValueError: If a required API key is empty.
    """
    job_store = JobStore(
        base_url=settings.job_store_url,
        internal_secret=settings.job_store_secret,
    )
    blob_client = BlobClient(
        endpoint_url=settings.blob_endpoint,
        bucket=settings.blob_bucket,
        access_key_id=settings.blob_access_key_id,
        secret_access_key=settings.blob_secret_access_key,
        public_base_url=settings.blob_public_base_url,
    )
    engines = build_engines(settings)
    title_generator = TitleGenerator(
        api_key=settings.groq_api_key, model=settings.title_model
    )

    async def _dispatch(job_id: str, is_link_job: bool) -> None:
        await process_job(
            job_id,
            is_link_job,
            job_store=job_store,
            blob_client=blob_client,
            engines=engines,
            settings=settings,
            title_generator=title_generator,
        )

    return _dispatch, job_store


async def _run(consumer: QueueConsumer, dispatch: DispatchFn, port: int = 8080) -> None:
    """Run the health server and queue consumer concurrently."""
    server = await asyncio.start_server(_health_handler, "0.0.0.0", port)
    logger.info("Health server listening on port %d", port)

    consumer_task = asyncio.create_task(consumer.run(dispatch))

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown() -> None:
        logger.info("Received shutdown signal")
        consumer.stop()
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown)

    await stop_event.wait()

    # Let in-flight jobs finish, but not past the platform's kill deadline
    done, _ = await asyncio.wait({consumer_task}, timeout=SHUTDOWN_TIMEOUT_SECONDS)
    if not done:
        logger.warning(
            "Consumer did not stop within %ss, cancelling", SHUTDOWN_TIMEOUT_SECONDS
        )
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass

    server.close()
    await server.wait_closed()


def main() -> None:
    """Start the queue consumer and process incoming triggers."""
    configure_logging()
    logger.info("QuickScribe worker starting")

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    if not settings.queue_api_url or not settings.queue_id:
        logger.critical("CF_QUEUE_API_URL and CF_QUEUE_ID are required")
        sys.exit(1)

    dispatch, job_store = build_dispatch(settings)
    consumer = QueueConsumer(
        queue_api_url=settings.queue_api_url,
        queue_id=settings.queue_id,
        cf_api_token=settings.queue_api_token,
    )

    async def _main() -> None:
        try:
            await _run(consumer, dispatch, settings.port)
        finally:
            await job_store.close()

    asyncio.run(_main())


if __name__ == "__main__":
    main()
