"""Abstract transcription engine interface.

Defines the TranscriptionEngine ABC and the canonical transcript data
models. Concrete adapters (Groq Whisper, AssemblyAI) subclass
TranscriptionEngine and normalize provider responses into these types.
All times are in seconds.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class TranscriptionMode(str, Enum):
    """Transcription mode chosen by the user when submitting a job."""

    CHILL = "chill"
    TURBO = "turbo"
    SPEAKERS = "speakers"


@dataclass
class Segment:
    """A time-stamped span of transcript text."""

    id: int
    start: float
    end: float
    text: str
    speaker: str | None = None


@dataclass
class TranscriptionResult:
    """Normalized output of a transcription adapter."""

    text: str
    segments: list[Segment]
    language: str | None = None
    duration: float | None = None
    provider: str = ""
    raw_response: dict = field(default_factory=dict, repr=False)


class TranscriptionEngine(ABC):
    """Abstract base class for transcription adapters.

    Subclasses must implement transcribe() and raise TranscriptionError
    subclasses for every failure.
    """

    provider_name: str = ""

    @abstractmethod
    async def transcribe(
        self, audio_path: str, mode: TranscriptionMode
    ) -> TranscriptionResult:
        """Transcribe an audio file.

        Args:
            audio_path: Path to the extracted audio (mono 16 kHz Opus).
            mode: Mode the job was submitted with.

        Returns:
            TranscriptionResult with text and segments in seconds.
        """
