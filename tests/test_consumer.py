"""Tests for quickscribe.queue.consumer module."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from quickscribe.queue.consumer import (
    DEFAULT_VISIBILITY_TIMEOUT_MS,
    QueueConsumer,
    QueueMessage,
    TriggerEvent,
)
from quickscribe.utils.errors import JobNotFoundError

API_URL = "https://api.cloudflare.com/client/v4/accounts/123"


def _make_consumer(**kwargs) -> QueueConsumer:
    return QueueConsumer(
        queue_api_url=API_URL,
        queue_id="jobs-queue-id",
        cf_api_token="test-token",
        poll_interval=0.1,
        **kwargs,
    )


class TestTriggerEventValidation:
    """Tests for TriggerEvent.from_message_body() validation."""

    def test_valid_message_parses_correctly(self):
        event = TriggerEvent.from_message_body({"jobId": "job-1", "isLinkJob": True})
        assert event.job_id == "job-1"
        assert event.is_link_job is True

    def test_snake_case_fields_accepted(self):
        event = TriggerEvent.from_message_body({"job_id": "job-1", "is_link_job": False})
        assert event == TriggerEvent(job_id="job-1", is_link_job=False)

    def test_is_link_job_defaults_to_false(self):
        assert TriggerEvent.from_message_body({"jobId": "job-1"}).is_link_job is False

    @pytest.mark.parametrize("body", [{}, {"jobId": ""}, {"jobId": 42}])
    def test_missing_or_invalid_job_id_raises(self, body):
        with pytest.raises(ValueError, match="jobId"):
            TriggerEvent.from_message_body(body)

    def test_non_boolean_is_link_job_raises(self):
        with pytest.raises(ValueError, match="isLinkJob"):
            TriggerEvent.from_message_body({"jobId": "job-1", "isLinkJob": "yes"})

    def test_non_object_body_raises(self):
        with pytest.raises(ValueError, match="JSON object"):
            TriggerEvent.from_message_body(["job-1"])

    def test_to_message_body(self):
        body = TriggerEvent(job_id="job-1", is_link_job=True).to_message_body()
        assert body == {"jobId": "job-1", "isLinkJob": True}


class TestQueueConsumerPollOnce:
    """Tests for QueueConsumer.poll_once() dispatch and ack handling."""

    def _prepare(self, consumer: QueueConsumer, messages: list[QueueMessage]) -> None:
        async def fake_pull(client):
            return messages

        consumer._pull_messages = fake_pull
        consumer._ack_message = AsyncMock()
        consumer._nack_message = AsyncMock()

    async def test_valid_message_dispatched_and_acked(self):
        consumer = _make_consumer()
        msg = QueueMessage(
            message_id="msg-1",
            lease_id="lease-1",
            body={"jobId": "job-abc", "isLinkJob": False},
        )
        self._prepare(consumer, [msg])
        mock_dispatch = AsyncMock()

        count = await consumer.poll_once(mock_dispatch)

        assert count == 1
        mock_dispatch.assert_called_once_with("job-abc", False)
        consumer._ack_message.assert_called_once()
        assert consumer._ack_message.call_args.args[0] == "lease-1"
        consumer._nack_message.assert_not_called()

    async def test_invalid_message_nacked(self):
        consumer = _make_consumer()
        msg = QueueMessage(message_id="msg-bad", lease_id="lease-bad", body={"x": 1})
        self._prepare(consumer, [msg])
        mock_dispatch = AsyncMock()

        count = await consumer.poll_once(mock_dispatch)

        assert count == 1
        mock_dispatch.assert_not_called()
        consumer._nack_message.assert_called_once()
        consumer._ack_message.assert_not_called()

    async def test_missing_job_is_acked(self):
        consumer = _make_consumer()
        msg = QueueMessage(message_id="m", lease_id="l", body={"jobId": "gone"})
        self._prepare(consumer, [msg])
        mock_dispatch = AsyncMock(side_effect=JobNotFoundError("gone"))

        await consumer.poll_once(mock_dispatch)

        consumer._ack_message.assert_called_once()
        consumer._nack_message.assert_not_called()

    async def test_dispatch_exception_retries_message(self):
        consumer = _make_consumer()
        msg = QueueMessage(
            message_id="msg-err",
            lease_id="lease-err",
            body={"jobId": "job-err", "isLinkJob": True},
        )
        self._prepare(consumer, [msg])
        mock_dispatch = AsyncMock(side_effect=RuntimeError("pipeline boom"))

        count = await consumer.poll_once(mock_dispatch)

        assert count == 1
        mock_dispatch.assert_called_once_with("job-err", True)
        consumer._nack_message.assert_called_once()
        consumer._ack_message.assert_not_called()

    async def test_batch_messages_all_dispatched(self):
        consumer = _make_consumer()
        messages = [
            QueueMessage(message_id=f"m{i}", lease_id=f"l{i}", body={"jobId": f"job-{i}"})
            for i in range(3)
        ]
        self._prepare(consumer, messages)
        mock_dispatch = AsyncMock()

        count = await consumer.poll_once(mock_dispatch)

        assert count == 3
        dispatched = sorted(call.args[0] for call in mock_dispatch.call_args_list)
        assert dispatched == ["job-0", "job-1", "job-2"]
        assert consumer._ack_message.call_count == 3

    async def test_empty_pull_dispatches_nothing(self):
        consumer = _make_consumer()
        self._prepare(consumer, [])
        mock_dispatch = AsyncMock()

        assert await consumer.poll_once(mock_dispatch) == 0
        mock_dispatch.assert_not_called()


class TestQueueConsumerHttp:
    """Tests for the pull and ack HTTP calls."""

    def _make_client(self, handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def _json_handler(self, response_body: dict, captured: list):
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=response_body, request=request)

        return handler

    async def test_body_as_json_string_is_parsed_to_dict(self):
        cf_response = {
            "result": {
                "messages": [
                    {
                        "id": "msg-1",
                        "lease_id": "lease-1",
                        "body": json.dumps({"jobId": "job-1", "isLinkJob": True}),
                    }
                ]
            }
        }
        consumer = _make_consumer()
        async with self._make_client(self._json_handler(cf_response, [])) as client:
            messages = await consumer._pull_messages(client)

        assert len(messages) == 1
        assert messages[0].body == {"jobId": "job-1", "isLinkJob": True}
        assert messages[0].lease_id == "lease-1"

    async def test_malformed_entries_are_skipped(self):
        cf_response = {
            "result": {
                "messages": [
                    {"id": "msg-1", "body": "{}"},
                    {"id": "msg-2", "lease_id": "l2", "body": "{not json"},
                    {"id": "msg-3", "lease_id": "l3", "body": {"jobId": "job-3"}},
                ]
            }
        }
        consumer = _make_consumer()
        async with self._make_client(self._json_handler(cf_response, [])) as client:
            messages = await consumer._pull_messages(client)

        assert [m.message_id for m in messages] == ["msg-3"]

    async def test_empty_queue_returns_empty_list(self):
        consumer = _make_consumer()
        handler = self._json_handler({"result": {"messages": []}}, [])
        async with self._make_client(handler) as client:
            assert await consumer._pull_messages(client) == []

    async def test_pull_http_error_returns_empty_list(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, request=request)

        consumer = _make_consumer()
        async with self._make_client(handler) as client:
            assert await consumer._pull_messages(client) == []

    async def test_pull_request_includes_visibility_timeout(self):
        captured: list[httpx.Request] = []
        consumer = _make_consumer()
        handler = self._json_handler({"result": {"messages": []}}, captured)

        async with self._make_client(handler) as client:
            await consumer._pull_messages(client)

        assert len(captured) == 1
        request = captured[0]
        assert str(request.url) == f"{API_URL}/queues/jobs-queue-id/messages/pull"
        assert request.headers["Authorization"] == "Bearer test-token"
        body = json.loads(request.content)
        assert body["batch_size"] == 5
        # Longer than the slowest transcription
        assert body["visibility_timeout_ms"] == DEFAULT_VISIBILITY_TIMEOUT_MS
        assert body["visibility_timeout_ms"] >= 30 * 60 * 1000

    async def test_ack_payload(self):
        captured: list[httpx.Request] = []
        consumer = _make_consumer()
        async with self._make_client(self._json_handler({}, captured)) as client:
            await consumer._ack_message("lease-1", client)

        assert str(captured[0].url).endswith("/messages/ack")
        assert json.loads(captured[0].content) == {"acks": [{"lease_id": "lease-1"}]}

    async def test_nack_payload_requests_delayed_retry(self):
        captured: list[httpx.Request] = []
        consumer = _make_consumer(retry_delay_seconds=10)
        async with self._make_client(self._json_handler({}, captured)) as client:
            await consumer._nack_message("lease-1", client)

        assert str(captured[0].url).endswith("/messages/ack")
        assert json.loads(captured[0].content) == {
            "retries": [{"lease_id": "lease-1", "delay_seconds": 10}]
        }

    async def test_ack_failure_is_logged_not_raised(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        consumer = _make_consumer()
        async with self._make_client(handler) as client:
            await consumer._ack_message("lease-1", client)

        assert any("Ack failed" in r.getMessage() for r in caplog.records)


class TestQueueConsumerRun:
    async def test_stop_ends_loop(self):
        consumer = _make_consumer()
        calls = 0

        async def fake_poll_once(dispatch_fn):
            nonlocal calls
            calls += 1
            consumer.stop()
            return 0

        consumer.poll_once = fake_poll_once

        await consumer.run(AsyncMock())

        assert calls == 1
        assert consumer._running is False

    async def test_poll_errors_do_not_stop_loop(self):
        consumer = _make_consumer()
        calls = 0

        async def flaky_poll_once(dispatch_fn):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("transient")
            consumer.stop()
            return 0

        consumer.poll_once = flaky_poll_once

        await consumer.run(AsyncMock())

        assert calls == 2

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CF_QUEUE_API_URL", f"{API_URL}/")
        monkeypatch.setenv("CF_QUEUE_ID", "env-queue")
        monkeypatch.setenv("CF_API_TOKEN", "env-token")

        consumer = QueueConsumer()

        assert consumer.queue_api_url == API_URL
        assert consumer.queue_id == "env-queue"
        assert consumer.cf_api_token == "env-token"
