"""Publishes transcription triggers to the Cloudflare Queue."""

from __future__ import annotations

import logging
import os

import httpx

from quickscribe.queue.consumer import TriggerEvent
from quickscribe.utils.errors import StorageError

logger = logging.getLogger(__name__)


class TriggerPublisher:
    """Sends {jobId, isLinkJob} messages via the Cloudflare Queues HTTP API.

    Configuration from environment variables:
        CF_QUEUE_API_URL, CF_QUEUE_ID, CF_API_TOKEN
    """

    def __init__(
        self,
        queue_api_url: str | None = None,
        queue_id: str | None = None,
        cf_api_token: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.queue_api_url = (
            queue_api_url or os.environ.get("CF_QUEUE_API_URL", "")
        ).rstrip("/")
        self.queue_id = queue_id or os.environ.get("CF_QUEUE_ID", "")
        self.cf_api_token = cf_api_token or os.environ.get("CF_API_TOKEN", "")
        self.timeout = timeout

        if not self.queue_api_url or not self.queue_id:
            raise StorageError(
                "CF_QUEUE_API_URL and CF_QUEUE_ID are required", operation="init"
            )

    async def publish(self, job_id: str, is_link_job: bool) -> None:
        """Enqueue a trigger for a job.

        Raises:
            StorageError: If the queue rejects the message or is unreachable.
        """
        event = TriggerEvent(job_id=job_id, is_link_job=is_link_job)
        url = f"{self.queue_api_url}/queues/{self.queue_id}/messages"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {self.cf_api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"body": event.to_message_body()},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"Failed to enqueue job: HTTP {exc.response.status_code}",
                job_id=job_id,
                operation="publish",
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"Failed to enqueue job: {exc}", job_id=job_id, operation="publish"
            ) from exc

        logger.info(
            "Published trigger for job %s (link=%s)",
            job_id,
            is_link_job,
            extra={"job_id": job_id},
        )
