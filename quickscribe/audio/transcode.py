"""Audio extraction with ffmpeg.

Converts any source media (video or audio) into compact mono Opus audio
(16 kHz, 64 kbit/s) suitable for the transcription providers.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from quickscribe.utils.errors import ExtractionError

logger = logging.getLogger(__name__)

TARGET_CODEC = "libopus"
TARGET_BITRATE = "64k"
TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
OUTPUT_EXTENSION = "opus"

DEFAULT_TIMEOUT_SECONDS = 300
_STDERR_SNIPPET_CHARS = 500


@dataclass
class ExtractionResult:
    """Result of a successful extraction."""

    source_path: str
    output_path: str
    source_size_bytes: int
    output_size_bytes: int


def _check_ffmpeg_available() -> str:
    """Verify ffmpeg is available on the system.

    Returns:
        Path to the ffmpeg binary.

    Raises:
        ExtractionError: If ffmpeg is not found.
    """
    ffmpeg_path = shutil.which("ffmpeg")
    if ffmpeg_path is None:
        raise ExtractionError("ffmpeg binary not found on PATH")
    return ffmpeg_path


def _stderr_summary(stderr: str | bytes | None) -> str:
    if not stderr:
        return "no output"
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return stderr.strip()[-_STDERR_SNIPPET_CHARS:] or "no output"


def _remove_quietly(path: str) -> None:
    """Delete a scratch file, logging instead of raising on failure."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to delete temp file %s", path, exc_info=True)


def build_ffmpeg_command(ffmpeg_path: str, input_path: str, output_path: str) -> list[str]:
    return [
        ffmpeg_path,
        "-i",
        input_path,
        "-y",
        "-vn",
        "-acodec",
        TARGET_CODEC,
        "-b:a",
        TARGET_BITRATE,
        "-ar",
        str(TARGET_SAMPLE_RATE),
        "-ac",
        str(TARGET_CHANNELS),
        output_path,
    ]


def extract_audio(
    source_path: str,
    output_dir: str,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    remove_source: bool = True,
    output_filename: str | None = None,
) -> ExtractionResult:
    """Extract mono 16 kHz Opus audio from a media file.

    Args:
        source_path: Path to the source media (video or audio).
        output_dir: Directory to write the extracted audio to.
        timeout: Seconds before ffmpeg is killed.
        remove_source: Delete source_path on every outcome.
        output_filename: Optional output filename. Defaults to source stem + .opus.

    Returns:
        ExtractionResult with paths and sizes.

    Raises:
        ExtractionError: If the source is missing, ffmpeg fails or times out,
            or the output is missing or empty.
    """
    try:
        return _extract(source_path, output_dir, timeout, output_filename)
    finally:
        if remove_source:
            _remove_quietly(source_path)


def _extract(
    source_path: str,
    output_dir: str,
    timeout: int,
    output_filename: str | None,
) -> ExtractionResult:
    source_file = Path(source_path)

    if not source_file.exists():
        raise ExtractionError(
            f"Input file does not exist: {source_path}",
            input_path=source_path,
        )

    ffmpeg_path = _check_ffmpeg_available()
    source_size = source_file.stat().st_size

    if output_filename is None:
        output_filename = f"{source_file.stem}.{OUTPUT_EXTENSION}"

    output_path = os.path.join(output_dir, output_filename)
    os.makedirs(output_dir, exist_ok=True)

    cmd = build_ffmpeg_command(ffmpeg_path, source_path, output_path)
    logger.info("Extracting audio from %s (%d bytes)", source_file.name, source_size)

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as exc:
        raise ExtractionError(
            f"Audio extraction failed (ffmpeg exit code {exc.returncode}): "
            f"{_stderr_summary(exc.stderr)}",
            input_path=source_path,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ExtractionError(
            f"Audio extraction timed out after {timeout} seconds. "
            f"stderr: {_stderr_summary(exc.stderr)}",
            input_path=source_path,
        ) from exc

    if not os.path.exists(output_path):
        raise ExtractionError(
            f"ffmpeg produced no output file: {output_path}",
            input_path=source_path,
        )

    output_size = os.path.getsize(output_path)
    if output_size == 0:
        raise ExtractionError(
            "Extracted audio is empty. The media might not have an audio "
            "track or the format is unsupported.",
            input_path=source_path,
        )

    logger.info("Extracted audio to %s (%d bytes)", output_path, output_size)
    return ExtractionResult(
        source_path=source_path,
        output_path=output_path,
        source_size_bytes=source_size,
        output_size_bytes=output_size,
    )
