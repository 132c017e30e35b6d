# tests/services/test_media_downloader.py

from pathlib import Path

import pytest
from yt_dlp.utils import DownloadError

from courier_bot.services import media_downloader
from courier_bot.services.media_downloader import (
    Platform,
    classify_download_error,
    detect_platform,
    download_media,
    extract_media_url,
    platform_emoji,
    wants_audio_only,
)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://www.youtube.com/watch?v=abc", Platform.YOUTUBE),
        ("https://youtu.be/abc", Platform.YOUTUBE),
        ("https://instagram.com/reel/xyz", Platform.INSTAGRAM),
        ("https://vm.tiktok.com/ZM123/", Platform.TIKTOK),
        ("https://x.com/user/status/1", Platform.TWITTER),
        ("https://example.com/video", Platform.UNKNOWN),
    ],
)
def test_detect_platform(url, expected):
    assert detect_platform(url) is expected


def test_extract_media_url_finds_link_in_text():
    found = extract_media_url("check this https://youtu.be/dQw4w9WgXcQ audio please")
    assert found == ("https://youtu.be/dQw4w9WgXcQ", Platform.YOUTUBE)


def test_extract_media_url_ignores_profile_pages():
    assert extract_media_url("https://www.instagram.com/someone/") is None
    assert extract_media_url("search inception") is None
    assert extract_media_url("") is None


def test_wants_audio_only():
    assert wants_audio_only("https://youtu.be/x mp3")
    assert wants_audio_only("Music please")
    assert not wants_audio_only("https://youtu.be/x")


def test_platform_emoji_has_default():
    assert platform_emoji(Platform.YOUTUBE) == "📺"
    assert platform_emoji(Platform.UNKNOWN) == "📥"


@pytest.mark.parametrize(
    "details,expected",
    [
        ("ERROR: Private video", "This content is private or protected."),
        ("Video unavailable", "This content is unavailable or has been deleted."),
        ("Sign in to confirm your age", "This content is age-restricted."),
        ("blocked on copyright grounds", "This content is blocked due to copyright."),
        ("", "Failed to download"),
    ],
)
def test_classify_download_error(details, expected):
    assert classify_download_error(details) == expected


def test_classify_download_error_truncates_generic_output():
    assert len(classify_download_error("x" * 500)) == 200

def test_classify_download_error_missing_ffmpeg():
    details = "ERROR: Postprocessing: ffprobe and ffmpeg not found. Please install"
    assert classify_download_error(details) == "ffmpeg is not installed. Please install it."


def _fake_youtube_dl(ext="mp4", size=10, title="My Clip", error=None, fragment=None):
    """Builds a YoutubeDL stand-in that writes into the output template."""
    created = []

    class FakeYoutubeDL:
        def __init__(self, options):
            self.options = options
            created.append(self)

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return False

        def extract_info(self, url, download=True):
            template = self.options["outtmpl"]
            if fragment:
                Path(template.replace("%(ext)s", fragment)).write_bytes(b"x")
            if error is not None:
                raise error
            path = Path(template.replace("%(ext)s", ext))
            path.write_bytes(b"x" * size)
            return {"title": title, "requested_downloads": [{"filepath": str(path)}]}

        def prepare_filename(self, info):
            return self.options["outtmpl"].replace("%(ext)s", ext)

    FakeYoutubeDL.created = created
    return FakeYoutubeDL


@pytest.mark.asyncio
async def test_download_media_video(mocker, tmp_path):
    fake = _fake_youtube_dl("mp4", 10)
    mocker.patch.object(media_downloader.yt_dlp, "YoutubeDL", fake)

    result = await download_media(
        "https://youtu.be/abc", False, staging_dir=tmp_path, max_bytes=100
    )

    assert result.success is True
    assert result.title == "My Clip"
    assert result.file_path.name.startswith("youtube_")
    assert result.is_audio is False
    options = fake.created[0].options
    assert options["merge_output_format"] == "mp4"
    assert "height<=720" in options["format"]


@pytest.mark.asyncio
async def test_download_media_audio_extracts_mp3(mocker, tmp_path):
    fake = _fake_youtube_dl("mp3", 10)
    mocker.patch.object(media_downloader.yt_dlp, "YoutubeDL", fake)

    result = await download_media(
        "https://youtu.be/abc", True, staging_dir=tmp_path, max_bytes=100
    )

    assert result.success is True
    assert result.is_audio is True
    assert result.file_path.suffix == ".mp3"
    postprocessor = fake.created[0].options["postprocessors"][0]
    assert postprocessor["key"] == "FFmpegExtractAudio"
    assert postprocessor["preferredcodec"] == "mp3"


@pytest.mark.asyncio
async def test_download_media_falls_back_to_platform_title(mocker, tmp_path):
    mocker.patch.object(
        media_downloader.yt_dlp, "YoutubeDL", _fake_youtube_dl("mp4", 10, title=None)
    )

    result = await download_media("https://x.com/user/status/1", staging_dir=tmp_path)

    assert result.title == "Twitter Video"


@pytest.mark.asyncio
async def test_download_media_too_large_is_deleted(mocker, tmp_path):
    mocker.patch.object(
        media_downloader.yt_dlp, "YoutubeDL", _fake_youtube_dl("mp4", 2 * 1024 * 1024)
    )

    result = await download_media(
        "https://youtu.be/abc", False, staging_dir=tmp_path, max_bytes=1024 * 1024
    )

    assert result.success is False
    assert "File too large" in result.error
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_download_media_private_post(mocker, tmp_path):
    mocker.patch.object(
        media_downloader.yt_dlp,
        "YoutubeDL",
        _fake_youtube_dl(error=DownloadError("ERROR: [instagram] abc: Private video")),
    )

    result = await download_media("https://instagram.com/p/abc", staging_dir=tmp_path)

    assert result.success is False
    assert result.error == "This content is private or protected."


@pytest.mark.asyncio
async def test_failed_download_removes_partial_fragments(mocker, tmp_path):
    mocker.patch.object(
        media_downloader.yt_dlp,
        "YoutubeDL",
        _fake_youtube_dl(
            error=DownloadError("ERROR: unable to download video data: HTTP Error 403"),
            fragment="f137.mp4.part",
        ),
    )

    result = await download_media("https://youtu.be/abc", staging_dir=tmp_path)

    assert result.success is False
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_interrupted_download_removes_partial_fragments(mocker, tmp_path):
    mocker.patch.object(
        media_downloader.yt_dlp,
        "YoutubeDL",
        _fake_youtube_dl(error=OSError("No space left on device"), fragment="mp4.part"),
    )

    result = await download_media("https://youtu.be/abc", staging_dir=tmp_path)

    assert result.success is False
    assert result.error == "No space left on device"
    assert list(tmp_path.iterdir()) == []
