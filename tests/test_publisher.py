"""Tests for quickscribe.queue.publisher module."""

import json

import httpx
import pytest

from quickscribe.queue.publisher import TriggerPublisher
from quickscribe.utils.errors import StorageError

API_URL = "https://api.cloudflare.com/client/v4/accounts/123"
MESSAGES_URL = f"{API_URL}/queues/jobs-queue-id/messages"


@pytest.fixture
def publisher():
    return TriggerPublisher(
        queue_api_url=API_URL, queue_id="jobs-queue-id", cf_api_token="test-token"
    )


class TestTriggerPublisher:
    def test_missing_queue_config_raises(self, monkeypatch):
        monkeypatch.delenv("CF_QUEUE_API_URL", raising=False)
        monkeypatch.delenv("CF_QUEUE_ID", raising=False)
        with pytest.raises(StorageError, match="CF_QUEUE_ID"):
            TriggerPublisher()

    async def test_publish_sends_trigger_body(self, publisher, httpx_mock):
        httpx_mock.add_response(url=MESSAGES_URL, method="POST", json={"success": True})

        await publisher.publish("job-1", True)

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer test-token"
        assert json.loads(request.content) == {
            "body": {"jobId": "job-1", "isLinkJob": True}
        }

    async def test_http_error_raises_storage_error(self, publisher, httpx_mock):
        httpx_mock.add_response(url=MESSAGES_URL, method="POST", status_code=403)

        with pytest.raises(StorageError, match="HTTP 403") as exc_info:
            await publisher.publish("job-1", False)
        assert exc_info.value.job_id == "job-1"

    async def test_network_error_raises_storage_error(self, publisher, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(StorageError, match="Failed to enqueue job: refused"):
            await publisher.publish("job-1", False)
