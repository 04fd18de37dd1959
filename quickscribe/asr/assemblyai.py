"""AssemblyAI transcription engine with optional speaker diarization.

Uploads the audio, creates a transcript job, polls until completion and
converts the result into a TranscriptionResult. With speaker_labels
enabled, segments come from AssemblyAI utterances and carry a speaker
label; otherwise they come from the sentences endpoint. AssemblyAI
reports times in milliseconds; they are converted to seconds here.
"""

import asyncio
import logging
import os
import time

import httpx

from quickscribe.asr.captions import generate_text
from quickscribe.asr.interface import (
    Segment,
    TranscriptionEngine,
    TranscriptionMode,
    TranscriptionResult,
)
from quickscribe.asr.responses import build_segments, check_response, transport_error
from quickscribe.utils.errors import (
    TranscriptionError,
    UnexpectedResponseError,
    UnknownTranscriptionError,
)
from quickscribe.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.assemblyai.com/v2"
POLL_INTERVAL_SECONDS = 3.0
DEFAULT_TIMEOUT_SECONDS = 1800
REQUEST_TIMEOUT_SECONDS = 120.0

MAX_RETRIES = 1
INITIAL_BACKOFF_SECONDS = 3.0

_PROVIDER = "assemblyai"
_DISPLAY_NAME = "AssemblyAI"


class AssemblyAIEngine(TranscriptionEngine):
    """AssemblyAI transcript API engine.

    Args:
        api_key: AssemblyAI API key.
        speaker_labels: Request speaker diarization (default True).
        base_url: API base URL.
        poll_interval: Seconds between status polls.
        timeout: Maximum seconds to wait for the transcript.
    """

    provider_name = _PROVIDER

    def __init__(
        self,
        api_key: str,
        speaker_labels: bool = True,
        base_url: str = DEFAULT_BASE_URL,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._speaker_labels = speaker_labels
        self._base_url = base_url.rstrip("/")
        self._poll_interval = poll_interval
        self._timeout = timeout

    @property
    def speaker_labels(self) -> bool:
        return self._speaker_labels

    async def transcribe(
        self, audio_path: str, mode: TranscriptionMode
    ) -> TranscriptionResult:
        """Transcribe an audio file via AssemblyAI.

        Raises:
            TranscriptionError: On upload, job or polling failure.
        """
        with open(audio_path, "rb") as f:
            audio_data = f.read()

        filename = os.path.basename(audio_path)
        logger.info(
            "Sending %s (%d bytes) to AssemblyAI (speaker_labels=%s)",
            filename,
            len(audio_data),
            self._speaker_labels,
        )

        return await retry_with_backoff(
            f"AssemblyAITranscription-{filename[:20]}",
            lambda: self._run(audio_data),
            max_retries=MAX_RETRIES,
            initial_backoff=INITIAL_BACKOFF_SECONDS,
            is_retryable=_is_retryable,
        )

    async def _run(self, audio_data: bytes) -> TranscriptionResult:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            upload_url = await self._upload(client, audio_data)
            transcript_id = await self._submit_job(client, upload_url)
            body = await self._poll_until_complete(client, transcript_id)
            if self._speaker_labels:
                return self._convert_utterances(body)
            sentences = await self._fetch_sentences(client, transcript_id)
            return self._convert_sentences(body, sentences)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self._api_key}

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: object,
    ) -> dict:
        """Send one request and return its JSON body.

        Raises:
            TranscriptionError: Mapped from the HTTP status or transport error.
        """
        try:
            response = await client.request(
                method, url, headers=self._headers(), **kwargs
            )
        except httpx.TransportError as exc:
            raise transport_error(exc, _PROVIDER, _DISPLAY_NAME) from exc

        check_response(response, _PROVIDER, _DISPLAY_NAME)

        try:
            return response.json()
        except ValueError as exc:
            raise UnknownTranscriptionError(
                f"AssemblyAI returned a response that is not JSON: {exc}",
                provider=_PROVIDER,
            ) from exc

    async def _upload(self, client: httpx.AsyncClient, audio_data: bytes) -> str:
        body = await self._send(
            client, "POST", f"{self._base_url}/upload", content=audio_data
        )
        upload_url = body.get("upload_url")
        if not upload_url:
            raise UnexpectedResponseError(
                "AssemblyAI did not return an upload URL.", provider=_PROVIDER
            )
        return upload_url

    async def _submit_job(self, client: httpx.AsyncClient, upload_url: str) -> str:
        body = await self._send(
            client,
            "POST",
            f"{self._base_url}/transcript",
            json={
                "audio_url": upload_url,
                "speaker_labels": self._speaker_labels,
            },
        )
        transcript_id = body.get("id")
        if not transcript_id:
            raise UnexpectedResponseError(
                "AssemblyAI did not return a transcript ID.", provider=_PROVIDER
            )
        logger.info("Submitted AssemblyAI transcript %s", transcript_id)
        return transcript_id

    async def _poll_until_complete(
        self, client: httpx.AsyncClient, transcript_id: str
    ) -> dict:
        """Poll the transcript until it is completed, errored, or timed out.

        Raises:
            UnknownTranscriptionError: If the job errors or times out.
        """
        url = f"{self._base_url}/transcript/{transcript_id}"
        deadline = time.monotonic() + self._timeout

        while time.monotonic() < deadline:
            body = await self._send(client, "GET", url)
            status = body.get("status", "")

            if status == "completed":
                logger.info("AssemblyAI transcript %s completed", transcript_id)
                return body

            if status == "error":
                raise UnknownTranscriptionError(
                    f"AssemblyAI transcription failed: {body.get('error')}",
                    provider=_PROVIDER,
                )

            await asyncio.sleep(self._poll_interval)

        raise UnknownTranscriptionError(
            f"AssemblyAI transcript {transcript_id} timed out after "
            f"{self._timeout}s",
            provider=_PROVIDER,
        )

    async def _fetch_sentences(
        self, client: httpx.AsyncClient, transcript_id: str
    ) -> dict:
        return await self._send(
            client, "GET", f"{self._base_url}/transcript/{transcript_id}/sentences"
        )

    def _convert_utterances(self, body: dict) -> TranscriptionResult:
        """Build speaker-labelled segments and a display transcript."""
        text = _require_text(body)
        utterances = body.get("utterances")
        if not isinstance(utterances, list):
            raise UnexpectedResponseError(
                "Transcription completed but AssemblyAI returned no speaker "
                "segments.",
                provider=_PROVIDER,
            )

        segments = build_segments(
            utterances, _PROVIDER, _DISPLAY_NAME, time_unit=1000, with_speakers=True
        )

        display_text = generate_text(segments) if segments else text
        return _build_result(display_text, segments, body)

    def _convert_sentences(self, body: dict, sentences: dict) -> TranscriptionResult:
        text = _require_text(body)
        items = sentences.get("sentences")
        if not isinstance(items, list):
            raise UnexpectedResponseError(
                "Transcription completed but AssemblyAI returned no sentence "
                "segments.",
                provider=_PROVIDER,
            )

        segments = build_segments(items, _PROVIDER, _DISPLAY_NAME, time_unit=1000)
        return _build_result(text, segments, body)


def _require_text(body: dict) -> str:
    text = body.get("text")
    if not isinstance(text, str) or not text.strip():
        raise UnexpectedResponseError(
            "Transcription completed but the response from AssemblyAI was "
            "empty or in an unexpected format.",
            provider=_PROVIDER,
        )
    return text.strip()


def _build_result(
    text: str, segments: list[Segment], body: dict
) -> TranscriptionResult:
    duration = body.get("audio_duration")
    return TranscriptionResult(
        text=text,
        segments=segments,
        language=body.get("language_code"),
        duration=float(duration) if duration is not None else None,
        provider=_PROVIDER,
        raw_response=body,
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TranscriptionError) and exc.retryable
