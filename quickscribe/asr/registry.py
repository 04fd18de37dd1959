"""Transcription engine registry with mode-driven selection.

build_engines() constructs one engine per TranscriptionMode at startup
from Settings; the pipeline looks up the engine for a job's mode with
get_engine().
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from quickscribe.asr.assemblyai import AssemblyAIEngine
from quickscribe.asr.groq import GroqWhisperEngine
from quickscribe.asr.interface import TranscriptionEngine, TranscriptionMode
from quickscribe.utils.errors import UnknownTranscriptionError

if TYPE_CHECKING:
    from quickscribe.config import Settings

logger = logging.getLogger(__name__)


def build_engines(settings: Settings) -> dict[TranscriptionMode, TranscriptionEngine]:
    """Create the engines available with the given settings.

    The Groq engine serves both "chill" and "turbo". The diarizing
    AssemblyAI engine is registered for "speakers" only when an
    AssemblyAI key is configured.

    Raises:
        ValueError: If a required API key is empty.
    """
    groq = GroqWhisperEngine(
        api_key=settings.groq_api_key,
        fast_model=settings.groq_fast_model,
        accurate_model=settings.groq_accurate_model,
    )
    engines: dict[TranscriptionMode, TranscriptionEngine] = {
        TranscriptionMode.CHILL: groq,
        TranscriptionMode.TURBO: groq,
    }

    if settings.diarization_enabled:
        engines[TranscriptionMode.SPEAKERS] = AssemblyAIEngine(
            api_key=settings.assemblyai_api_key, speaker_labels=True
        )
    else:
        logger.warning(
            "ASSEMBLYAI_API_KEY not set; '%s' mode is disabled",
            TranscriptionMode.SPEAKERS.value,
        )

    return engines


def parse_mode(value: str) -> TranscriptionMode:
    """Convert a stored engineUsed value into a TranscriptionMode.

    Raises:
        UnknownTranscriptionError: If the value is not a known mode.
    """
    try:
        return TranscriptionMode(value)
    except ValueError:
        available = ", ".join(mode.value for mode in TranscriptionMode)
        raise UnknownTranscriptionError(
            f"Unknown transcription mode: '{value}'. Available: {available}"
        ) from None


def get_engine(
    engines: Mapping[TranscriptionMode, TranscriptionEngine], mode: TranscriptionMode
) -> TranscriptionEngine:
    """Return the engine registered for a mode.

    Raises:
        UnknownTranscriptionError: If no engine is configured for the mode.
    """
    engine = engines.get(mode)
    if engine is None:
        raise UnknownTranscriptionError(
            f"Transcription mode '{mode.value}' is not available on this server."
        )
    return engine
