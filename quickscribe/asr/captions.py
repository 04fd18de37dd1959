"""Caption formatting: SRT, WebVTT, and plain text.

Converts transcript segments into caption files. Timestamps are
HH:MM:SS,mmm for SRT and HH:MM:SS.mmm for WebVTT; hours are not
clamped to 24.
"""

import re
from collections.abc import Iterable
from typing import Literal

from quickscribe.asr.interface import Segment

TimestampKind = Literal["srt", "vtt"]

_SEPARATORS = {"srt": ",", "vtt": "."}
_TIMESTAMP_PATTERN = re.compile(r"^(\d{2,}):([0-5]\d):([0-5]\d)[,.](\d{3})$")


def format_timestamp(seconds: float, kind: TimestampKind) -> str:
    """Format a non-negative number of seconds as a caption timestamp.

    Args:
        seconds: Offset from the start of the media, in seconds.
        kind: "srt" (comma before milliseconds) or "vtt" (period).

    Returns:
        Timestamp such as "01:02:03,456".

    Raises:
        ValueError: On negative input or an unknown kind.
    """
    if kind not in _SEPARATORS:
        raise ValueError(f"Unknown timestamp kind: {kind!r}")
    if seconds < 0:
        raise ValueError(f"Timestamp cannot be negative: {seconds}")

    total_ms = int(round(seconds * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    separator = _SEPARATORS[kind]
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def parse_timestamp(value: str) -> float:
    """Parse an SRT or WebVTT timestamp back into seconds."""
    match = _TIMESTAMP_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid caption timestamp: {value!r}")
    hours, minutes, secs, millis = (int(part) for part in match.groups())
    return hours * 3600 + minutes * 60 + secs + millis / 1000


def generate_srt(segments: Iterable[Segment]) -> str:
    """Build an SRT document, one numbered cue per segment."""
    cues = []
    for number, segment in enumerate(segments, start=1):
        start = format_timestamp(segment.start, "srt")
        end = format_timestamp(segment.end, "srt")
        cues.append(f"{number}\n{start} --> {end}\n{segment.text.strip()}\n")
    return "\n".join(cues)


def generate_vtt(segments: Iterable[Segment]) -> str:
    """Build a WebVTT document. An empty input yields just the header."""
    cues = []
    for segment in segments:
        start = format_timestamp(segment.start, "vtt")
        end = format_timestamp(segment.end, "vtt")
        cues.append(f"{start} --> {end}\n{segment.text.strip()}\n")
    return "WEBVTT\n\n" + "\n".join(cues)


def generate_text(segments: Iterable[Segment]) -> str:
    """Join segments into plain text, one line each.

    Lines are prefixed with "Speaker X: " when the segment carries a
    speaker label.
    """
    lines = []
    for segment in segments:
        text = segment.text.strip()
        if segment.speaker:
            lines.append(f"Speaker {segment.speaker}: {text}")
        else:
            lines.append(text)
    return "\n".join(lines)
