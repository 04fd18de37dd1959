"""Shared response handling for the transcription adapters.

Maps provider status codes and httpx transport errors onto the
TranscriptionError taxonomy, and converts provider segment lists into
Segment objects.
"""

import httpx

from quickscribe.asr.interface import Segment
from quickscribe.utils.errors import (
    PayloadTooLargeError,
    RateLimitedError,
    ServiceUnavailableError,
    TranscriptionError,
    TranscriptionNetworkError,
    UnauthorizedError,
    UnexpectedResponseError,
    UnknownTranscriptionError,
)

_ERROR_BODY_LIMIT = 300


def check_response(
    response: httpx.Response, provider: str, display_name: str
) -> None:
    """Raise the matching TranscriptionError for a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return

    if status in (401, 403):
        raise UnauthorizedError(
            f"{display_name} rejected the API credentials ({status}). "
            "Please contact support.",
            provider=provider,
            status_code=status,
        )
    if status == 413:
        raise PayloadTooLargeError(
            f"The audio is too large for {display_name} to accept. "
            "Please use a shorter recording.",
            provider=provider,
            status_code=status,
        )
    if status == 429:
        raise RateLimitedError(
            f"{display_name} is receiving too many requests right now. "
            "Please wait a moment and try again.",
            provider=provider,
            status_code=status,
        )
    if status >= 500:
        raise ServiceUnavailableError(
            f"{display_name}'s transcription service is temporarily "
            f"unavailable ({status}). Please wait a moment and try again.",
            provider=provider,
            status_code=status,
        )
    raise UnknownTranscriptionError(
        f"{display_name} API error (status {status}): "
        f"{response.text[:_ERROR_BODY_LIMIT]}",
        provider=provider,
        status_code=status,
    )


def transport_error(
    exc: httpx.TransportError, provider: str, display_name: str
) -> TranscriptionError:
    """Build a TranscriptionNetworkError for a failed connection."""
    if isinstance(exc, httpx.TimeoutException):
        detail = "timed out"
    else:
        detail = "was interrupted"
    return TranscriptionNetworkError(
        f"The connection to {display_name} {detail} ({type(exc).__name__}). "
        "This often happens with very large audio files or network "
        "interruptions. Please try again.",
        provider=provider,
    )


def build_segments(
    items: list,
    provider: str,
    display_name: str,
    time_unit: float = 1.0,
    with_speakers: bool = False,
) -> list[Segment]:
    """Convert provider segment dicts into Segments.

    Args:
        items: Segment dicts with start, end and text (optionally id, speaker).
        provider: Provider name for raised errors.
        display_name: Provider name shown to users.
        time_unit: Provider time units per second (1000 for milliseconds).
        with_speakers: Read the "speaker" label of each item.

    Raises:
        UnexpectedResponseError: If an item is not a dict, has non-numeric
            times or ends before it starts.
    """
    segments = []
    try:
        for index, item in enumerate(items):
            start = float(item.get("start") or 0) / time_unit
            end = float(item.get("end") or 0) / time_unit
            text = item.get("text") or ""
            if end < start or not isinstance(text, str):
                raise ValueError(f"invalid segment {index}")
            segments.append(
                Segment(
                    id=item.get("id", index),
                    start=start,
                    end=end,
                    text=text,
                    speaker=(item.get("speaker") or None) if with_speakers else None,
                )
            )
    except (AttributeError, TypeError, ValueError) as exc:
        raise UnexpectedResponseError(
            f"Transcription failed: Unexpected segment data from {display_name}.",
            provider=provider,
        ) from exc
    return segments
