"""Tests for quickscribe.audio.download module."""

import os
import subprocess
from unittest.mock import patch

import httpx
import pytest

from quickscribe.audio.download import (
    direct_media_extension,
    download_link,
    validate_link,
)
from quickscribe.utils.errors import DownloadError


class TestValidateLink:
    """Tests for validate_link()."""

    def test_accepts_video_link(self):
        url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert validate_link(f"  {url} ") == url

    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=abc&list=PL123",
            "https://www.youtube.com/playlist?list=PL123",
            "https://www.youtube.com/playlist/",
        ],
    )
    def test_rejects_playlists(self, url):
        with pytest.raises(DownloadError, match="playlists are not supported"):
            validate_link(url)

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/a.mp4"])
    def test_rejects_malformed(self, url):
        with pytest.raises(DownloadError, match="Invalid link"):
            validate_link(url)


class TestDirectMediaExtension:
    def test_media_extension(self):
        assert direct_media_extension("https://cdn.example.com/v/Clip.MP4") == "mp4"

    def test_ignores_query_string(self):
        assert direct_media_extension("https://cdn.example.com/a.mp3?sig=1") == "mp3"

    def test_non_media(self):
        assert direct_media_extension("https://vimeo.com/12345") is None


class TestDownloadDirect:
    """Tests for direct media links streamed with httpx."""

    async def test_streams_file_to_disk(self, tmp_path, httpx_mock):
        httpx_mock.add_response(
            url="https://cdn.example.com/media/clip.mp4", content=b"video-bytes"
        )

        path = await download_link("https://cdn.example.com/media/clip.mp4", str(tmp_path))

        assert path == os.path.join(str(tmp_path), "source.mp4")
        with open(path, "rb") as f:
            assert f.read() == b"video-bytes"

    async def test_http_error_raises_download_error(self, tmp_path, httpx_mock):
        httpx_mock.add_response(
            url="https://cdn.example.com/media/missing.mp4", status_code=404
        )

        with pytest.raises(DownloadError, match="HTTP 404"):
            await download_link(
                "https://cdn.example.com/media/missing.mp4", str(tmp_path)
            )

    async def test_transport_error_raises_download_error(self, tmp_path, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(DownloadError, match="Failed to download"):
            await download_link("https://cdn.example.com/media/a.mp3", str(tmp_path))

    async def test_empty_body_raises_download_error(self, tmp_path, httpx_mock):
        httpx_mock.add_response(url="https://cdn.example.com/empty.wav", content=b"")

        with pytest.raises(DownloadError, match="no content"):
            await download_link("https://cdn.example.com/empty.wav", str(tmp_path))


@patch("quickscribe.audio.download.shutil.which", return_value="/usr/bin/yt-dlp")
class TestDownloadWithYtdlp:
    """Tests for links resolved by yt-dlp."""

    async def test_runs_ytdlp_with_bounded_timeout(self, _which, tmp_path):
        def fake_run(cmd, **kwargs):
            with open(cmd[cmd.index("-o") + 1], "wb") as f:
                f.write(b"m4a-bytes")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        with patch(
            "quickscribe.audio.download.subprocess.run", side_effect=fake_run
        ) as mock_run:
            path = await download_link(
                "https://www.youtube.com/watch?v=abc", str(tmp_path), timeout=120
            )

        assert path == os.path.join(str(tmp_path), "source.m4a")
        cmd = mock_run.call_args.args[0]
        assert "--no-playlist" in cmd
        assert cmd[cmd.index("--audio-format") + 1] == "m4a"
        assert cmd[-1] == "https://www.youtube.com/watch?v=abc"
        assert mock_run.call_args.kwargs["timeout"] == 120

    async def test_nonzero_exit_raises_download_error(self, _which, tmp_path):
        error = subprocess.CalledProcessError(
            1, ["yt-dlp"], output="", stderr="ERROR: Video unavailable"
        )
        with patch("quickscribe.audio.download.subprocess.run", side_effect=error):
            with pytest.raises(DownloadError, match="Video unavailable"):
                await download_link("https://vimeo.com/1", str(tmp_path))

    async def test_timeout_raises_download_error(self, _which, tmp_path):
        error = subprocess.TimeoutExpired(["yt-dlp"], 10)
        with patch("quickscribe.audio.download.subprocess.run", side_effect=error):
            with pytest.raises(DownloadError, match="timed out after 10 seconds"):
                await download_link("https://vimeo.com/1", str(tmp_path), timeout=10)

    async def test_no_output_raises_download_error(self, _which, tmp_path):
        with patch(
            "quickscribe.audio.download.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, "", ""),
        ):
            with pytest.raises(DownloadError, match="no content"):
                await download_link("https://vimeo.com/1", str(tmp_path))

    async def test_playlist_rejected_before_running(self, _which, tmp_path):
        with patch("quickscribe.audio.download.subprocess.run") as mock_run:
            with pytest.raises(DownloadError):
                await download_link(
                    "https://www.youtube.com/watch?v=a&list=PL1", str(tmp_path)
                )
        mock_run.assert_not_called()
