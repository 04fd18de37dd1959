"""Speech-to-text adapters, caption formatting, titles and transcript AI tasks."""

from quickscribe.asr.interaction import TranscriptInteraction
from quickscribe.asr.registry import build_engines, get_engine

__all__ = ["TranscriptInteraction", "build_engines", "get_engine"]
