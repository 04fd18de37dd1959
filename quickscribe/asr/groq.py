"""Groq Whisper transcription engine.

Sends extracted audio to Groq's OpenAI-compatible audio transcription
endpoint with verbose_json output and segment timestamps, and converts
the response into a TranscriptionResult.
"""

import logging
import os

import httpx

from quickscribe.asr.interface import (
    TranscriptionEngine,
    TranscriptionMode,
    TranscriptionResult,
)
from quickscribe.asr.responses import build_segments, check_response, transport_error
from quickscribe.utils.errors import (
    PayloadTooLargeError,
    TranscriptionError,
    UnexpectedResponseError,
    UnknownTranscriptionError,
)
from quickscribe.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_FAST_MODEL = "distil-whisper-large-v3-en"
DEFAULT_ACCURATE_MODEL = "whisper-large-v3"
REQUEST_TIMEOUT_SECONDS = 300.0
AUDIO_LIMIT_BYTES = 25 * 1024 * 1024

MAX_RETRIES = 2
INITIAL_BACKOFF_SECONDS = 2.0

_PROVIDER = "groq"
_DISPLAY_NAME = "Groq"


class GroqWhisperEngine(TranscriptionEngine):
    """Whisper transcription through the Groq API.

    The "chill" mode uses the fast, economical model and "turbo" the
    high-accuracy one. Both model names are configurable.

    Args:
        api_key: Groq API key.
        fast_model: Model used for TranscriptionMode.CHILL.
        accurate_model: Model used for TranscriptionMode.TURBO.
        base_url: API base URL.
        timeout: Per-request timeout in seconds.
    """

    provider_name = _PROVIDER

    def __init__(
        self,
        api_key: str,
        fast_model: str = DEFAULT_FAST_MODEL,
        accurate_model: str = DEFAULT_ACCURATE_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._fast_model = fast_model
        self._accurate_model = accurate_model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def model_for(self, mode: TranscriptionMode) -> str:
        """Return the provider model name bound to a mode."""
        if mode == TranscriptionMode.TURBO:
            return self._accurate_model
        return self._fast_model

    async def transcribe(
        self, audio_path: str, mode: TranscriptionMode
    ) -> TranscriptionResult:
        """Transcribe an audio file via the Groq transcription endpoint.

        Raises:
            PayloadTooLargeError: If the audio exceeds the 25 MB limit.
            TranscriptionError: On any provider or network failure.
        """
        size_bytes = os.path.getsize(audio_path)
        if size_bytes > AUDIO_LIMIT_BYTES:
            size_mb = size_bytes / (1024 * 1024)
            limit_mb = AUDIO_LIMIT_BYTES / (1024 * 1024)
            raise PayloadTooLargeError(
                f"Extracted audio ({size_mb:.2f} MB) exceeds the transcription "
                f"service limit of {limit_mb:.2f} MB. Please use a shorter video.",
                provider=_PROVIDER,
            )

        with open(audio_path, "rb") as f:
            audio_data = f.read()

        model = self.model_for(mode)
        filename = os.path.basename(audio_path)
        logger.info(
            "Sending %s (%d bytes) to Groq model %s", filename, size_bytes, model
        )

        raw_response = await retry_with_backoff(
            f"GroqTranscription-{filename[:20]}",
            lambda: self._request(audio_data, filename, model),
            max_retries=MAX_RETRIES,
            initial_backoff=INITIAL_BACKOFF_SECONDS,
            is_retryable=_is_retryable,
        )
        return self._convert_response(raw_response)

    async def _request(self, audio_data: bytes, filename: str, model: str) -> dict:
        """Perform one transcription request.

        Raises:
            TranscriptionError: Mapped from the HTTP status or transport error.
        """
        url = f"{self._base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        files = {"file": (filename, audio_data, "audio/ogg")}
        data = {
            "model": model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": "segment",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url, headers=headers, files=files, data=data
                )
        except httpx.TransportError as exc:
            raise transport_error(exc, _PROVIDER, _DISPLAY_NAME) from exc

        check_response(response, _PROVIDER, _DISPLAY_NAME)

        try:
            return response.json()
        except ValueError as exc:
            raise UnknownTranscriptionError(
                f"Groq returned a response that is not JSON: {exc}",
                provider=_PROVIDER,
            ) from exc

    def _convert_response(self, raw_response: dict) -> TranscriptionResult:
        """Convert a verbose_json response into a TranscriptionResult.

        Raises:
            UnexpectedResponseError: If text or segments are missing.
        """
        text = raw_response.get("text")
        segments_data = raw_response.get("segments")

        if not isinstance(text, str) or not text.strip():
            raise UnexpectedResponseError(
                "Transcription failed: Groq returned no transcript text.",
                provider=_PROVIDER,
            )
        if not isinstance(segments_data, list):
            raise UnexpectedResponseError(
                "Transcription failed: Unexpected response structure from Groq.",
                provider=_PROVIDER,
            )

        segments = build_segments(segments_data, _PROVIDER, _DISPLAY_NAME)

        duration = raw_response.get("duration")
        return TranscriptionResult(
            text=text.strip(),
            segments=segments,
            language=raw_response.get("language"),
            duration=float(duration) if duration is not None else None,
            provider=_PROVIDER,
            raw_response=raw_response,
        )


def _is_retryable(exc: BaseException) -> bool:
    """Only transient provider errors are retried; auth and validation are not."""
    return isinstance(exc, TranscriptionError) and exc.retryable
