"""Link resolution for link jobs.

Direct links to media files are streamed with httpx. Everything else
(YouTube, Vimeo and the other sites yt-dlp understands) is handed to the
yt-dlp binary, which extracts the best audio track as M4A.
"""

import asyncio
import functools
import logging
import os
import re
import shutil
import subprocess
from urllib.parse import parse_qs, urlparse

import httpx

from quickscribe.utils.errors import DownloadError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
DOWNLOAD_CHUNK_BYTES = 1024 * 1024
YTDLP_AUDIO_FORMAT = "m4a"

_DIRECT_MEDIA_PATTERN = re.compile(
    r"\.(mp4|mov|webm|avi|mkv|flv|mpeg|mpg|wmv|m4a|aac|ogg|wav|flac|opus|mp3)$",
    re.IGNORECASE,
)
_STDERR_SNIPPET_CHARS = 500


def validate_link(url: str) -> str:
    """Check that a link is an http(s) URL and not a playlist.

    Returns:
        The stripped URL.

    Raises:
        DownloadError: If the link is malformed or points to a playlist.
    """
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise DownloadError(f"Invalid link: '{url}'", url=url)

    query = parse_qs(parsed.query)
    if "list" in query or parsed.path.rstrip("/").endswith("/playlist"):
        raise DownloadError(
            "Links to playlists are not supported. Please submit a single video.",
            url=url,
        )
    return url


def direct_media_extension(url: str) -> str | None:
    """Return the file extension if the URL path names a media file."""
    match = _DIRECT_MEDIA_PATTERN.search(urlparse(url).path)
    if match:
        return match.group(1).lower()
    return None


async def download_link(
    url: str,
    output_dir: str,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    basename: str = "source",
) -> str:
    """Download the media behind a link into output_dir.

    Args:
        url: The link submitted by the user.
        output_dir: Scratch directory for the downloaded file.
        timeout: Seconds allowed for the download.
        basename: Filename stem of the downloaded file.

    Returns:
        Path to the downloaded file.

    Raises:
        DownloadError: On invalid links or any download failure.
    """
    url = validate_link(url)
    os.makedirs(output_dir, exist_ok=True)

    extension = direct_media_extension(url)
    if extension is not None:
        output_path = os.path.join(output_dir, f"{basename}.{extension}")
        logger.info("Downloading direct media link %s", url)
        await _download_direct(url, output_path, timeout)
    else:
        output_path = os.path.join(output_dir, f"{basename}.{YTDLP_AUDIO_FORMAT}")
        logger.info("Downloading %s with yt-dlp", url)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, functools.partial(_download_with_ytdlp, url, output_path, timeout)
        )

    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise DownloadError(
            f"Download produced no content for link: {url}", url=url
        )

    logger.info(
        "Downloaded %s to %s (%d bytes)",
        url,
        output_path,
        os.path.getsize(output_path),
    )
    return output_path


async def _download_direct(url: str, output_path: str, timeout: int) -> None:
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0), follow_redirects=True
        ) as client:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise DownloadError(
                        f"Failed to download from direct link: HTTP "
                        f"{response.status_code} for URL: {url}",
                        url=url,
                    )
                with open(output_path, "wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_BYTES):
                        f.write(chunk)
    except httpx.HTTPError as exc:
        raise DownloadError(
            f"Failed to download from direct link: {exc}", url=url
        ) from exc


def _download_with_ytdlp(url: str, output_path: str, timeout: int) -> None:
    ytdlp_path = shutil.which("yt-dlp")
    if ytdlp_path is None:
        raise DownloadError("yt-dlp binary not found on PATH", url=url)

    cmd = [
        ytdlp_path,
        "--quiet",
        "--no-playlist",
        "--force-overwrites",
        "-x",
        "--audio-format",
        YTDLP_AUDIO_FORMAT,
        "-o",
        output_path,
        url,
    ]

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()[-_STDERR_SNIPPET_CHARS:]
        raise DownloadError(
            f"yt-dlp failed (exit code {exc.returncode}): {stderr or 'no output'}",
            url=url,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise DownloadError(
            f"yt-dlp timed out after {timeout} seconds", url=url
        ) from exc
