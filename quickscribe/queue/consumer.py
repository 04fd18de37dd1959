"""Queue consumer for transcription triggers.

Polls a Cloudflare Queue via the HTTP pull API. Each message carries a
trigger {jobId, isLinkJob}; messages are validated, dispatched to the
pipeline, then acked or retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from quickscribe.utils.errors import JobNotFoundError

logger = logging.getLogger(__name__)

# Leases must outlive the slowest job (AssemblyAI polling allows 30 minutes)
DEFAULT_VISIBILITY_TIMEOUT_MS = 40 * 60 * 1000
DEFAULT_RETRY_DELAY_SECONDS = 30

DispatchFn = Callable[[str, bool], Awaitable[Any]]


@dataclass
class TriggerEvent:
    """Validated trigger deserialized from a queue message."""

    job_id: str
    is_link_job: bool

    @classmethod
    def from_message_body(cls, body: dict[str, Any]) -> TriggerEvent:
        """Deserialize and validate a queue message body.

        Accepts the camelCase fields written by the web application
        (jobId, isLinkJob) as well as job_id/is_link_job.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        if not isinstance(body, dict):
            raise ValueError("Message body must be a JSON object")

        job_id = body.get("jobId", body.get("job_id"))
        if not job_id or not isinstance(job_id, str):
            raise ValueError("Missing or invalid 'jobId' in message")

        is_link_job = body.get("isLinkJob", body.get("is_link_job", False))
        if not isinstance(is_link_job, bool):
            raise ValueError(
                f"Invalid 'isLinkJob': {is_link_job!r}. Must be a boolean"
            )

        return cls(job_id=job_id, is_link_job=is_link_job)

    def to_message_body(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "isLinkJob": self.is_link_job}


@dataclass
class QueueMessage:
    """A message received from a Cloudflare Queue."""

    message_id: str
    lease_id: str
    body: dict[str, Any]


class QueueConsumer:
    """Cloudflare Queues HTTP pull consumer.

    Messages from one pull are processed concurrently, one task per job.

    Configuration from environment variables:
        CF_QUEUE_API_URL, CF_QUEUE_ID, CF_API_TOKEN
    """

    def __init__(
        self,
        queue_api_url: str | None = None,
        queue_id: str | None = None,
        cf_api_token: str | None = None,
        poll_interval: float = 5.0,
        batch_size: int = 5,
        visibility_timeout_ms: int = DEFAULT_VISIBILITY_TIMEOUT_MS,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        self.queue_api_url = (
            queue_api_url or os.environ.get("CF_QUEUE_API_URL", "")
        ).rstrip("/")
        self.queue_id = queue_id or os.environ.get("CF_QUEUE_ID", "")
        self.cf_api_token = cf_api_token or os.environ.get("CF_API_TOKEN", "")
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.visibility_timeout_ms = visibility_timeout_ms
        self.retry_delay_seconds = retry_delay_seconds
        self._running = False

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for Cloudflare API."""
        return {
            "Authorization": f"Bearer {self.cf_api_token}",
            "Content-Type": "application/json",
        }

    def _messages_url(self, action: str) -> str:
        return f"{self.queue_api_url}/queues/{self.queue_id}/messages/{action}"

    async def _pull_messages(self, client: httpx.AsyncClient) -> list[QueueMessage]:
        """Pull a batch of messages.

        Returns:
            List of QueueMessage objects. Empty list on error or no messages.
        """
        try:
            response = await client.post(
                self._messages_url("pull"),
                headers=self._headers(),
                json={
                    "batch_size": self.batch_size,
                    "visibility_timeout_ms": self.visibility_timeout_ms,
                },
                timeout=30.0,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPStatusError, httpx.RequestError, ValueError) as exc:
            logger.error("Queue pull failed for %s: %s", self.queue_id, exc)
            return []

        messages_data = (data.get("result") or {}).get("messages") or []

        messages: list[QueueMessage] = []
        for msg in messages_data:
            try:
                body = msg["body"]
                # The HTTP API delivers JSON bodies as strings
                if isinstance(body, str):
                    body = json.loads(body)
                messages.append(
                    QueueMessage(
                        message_id=msg["id"],
                        lease_id=msg["lease_id"],
                        body=body,
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Malformed queue message structure: %s", exc)

        return messages

    async def _ack_message(self, lease_id: str, client: httpx.AsyncClient) -> None:
        """Acknowledge a message so it is not delivered again."""
        await self._post_ack(client, {"acks": [{"lease_id": lease_id}]}, lease_id)

    async def _nack_message(self, lease_id: str, client: httpx.AsyncClient) -> None:
        """Return a message to the queue for redelivery after a delay."""
        await self._post_ack(
            client,
            {
                "retries": [
                    {
                        "lease_id": lease_id,
                        "delay_seconds": self.retry_delay_seconds,
                    }
                ]
            },
            lease_id,
        )

    async def _post_ack(
        self, client: httpx.AsyncClient, payload: dict[str, Any], lease_id: str
    ) -> None:
        try:
            response = await client.post(
                self._messages_url("ack"),
                headers=self._headers(),
                json=payload,
                timeout=30.0,
            )
            response.raise_for_status()
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            logger.error("Ack failed for lease %s: %s", lease_id, exc)

    async def _process_message(
        self,
        message: QueueMessage,
        dispatch_fn: DispatchFn,
        client: httpx.AsyncClient,
    ) -> None:
        """Validate, dispatch, and ack/retry a single message.

        A missing job is acked: redelivering it can never succeed. Any
        other dispatch failure is retried; the pipeline skips jobs that
        already left PENDING, so redelivery is safe.
        """
        try:
            event = TriggerEvent.from_message_body(message.body)
        except ValueError as exc:
            logger.warning("Invalid message %s: %s", message.message_id, exc)
            await self._nack_message(message.lease_id, client)
            return

        logger.info(
            "Received trigger: job_id=%s is_link_job=%s",
            event.job_id,
            event.is_link_job,
            extra={"job_id": event.job_id},
        )

        try:
            await dispatch_fn(event.job_id, event.is_link_job)
        except JobNotFoundError as exc:
            logger.error(str(exc), extra={"job_id": event.job_id})
            await self._ack_message(message.lease_id, client)
        except Exception:
            logger.error(
                "Pipeline dispatch failed for job %s",
                event.job_id,
                exc_info=True,
                extra={"job_id": event.job_id},
            )
            await self._nack_message(message.lease_id, client)
        else:
            await self._ack_message(message.lease_id, client)

    async def poll_once(self, dispatch_fn: DispatchFn) -> int:
        """Execute a single poll cycle.

        Args:
            dispatch_fn: Async callable(job_id, is_link_job).

        Returns:
            Number of messages processed.
        """
        async with httpx.AsyncClient() as client:
            messages = await self._pull_messages(client)
            await asyncio.gather(
                *(
                    self._process_message(msg, dispatch_fn, client)
                    for msg in messages
                )
            )
        return len(messages)

    async def run(self, dispatch_fn: DispatchFn) -> None:
        """Start the polling loop. Runs until stopped.

        Args:
            dispatch_fn: Async callable(job_id, is_link_job).
        """
        self._running = True
        logger.info("Queue consumer starting poll loop on %s", self.queue_id)

        while self._running:
            try:
                count = await self.poll_once(dispatch_fn)
                if count > 0:
                    logger.info("Processed %d messages this cycle", count)
            except Exception:
                logger.error("Unexpected error in poll cycle", exc_info=True)

            if self._running:
                await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        """Signal the polling loop to stop."""
        self._running = False
        logger.info("Queue consumer stopping")
