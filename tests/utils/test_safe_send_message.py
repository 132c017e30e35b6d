import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

from courier_bot.utils import call_with_retries, safe_send_attachment, safe_send_message

sys.path.append(str(Path(__file__).resolve().parent.parent.parent))


@pytest.mark.asyncio
async def test_safe_send_message_success(mocker):
    # Arrange
    message = SimpleNamespace(message_id=1)
    bot = SimpleNamespace(send_message=AsyncMock(return_value=message))

    # Act
    result = await safe_send_message(bot, chat_id=123, text="hi")

    # Assert
    bot.send_message.assert_awaited_once_with(chat_id=123, text="hi")
    assert result is message


@pytest.mark.asyncio
async def test_safe_send_message_retries_on_timeout_then_succeeds(mocker):
    message = SimpleNamespace(message_id=1)
    send = AsyncMock(side_effect=[TimedOut(), message])
    bot = SimpleNamespace(send_message=send)
    sleep_mock = mocker.patch("asyncio.sleep", new=AsyncMock())

    result = await safe_send_message(bot, chat_id=1, text="x", base_delay=0)

    assert send.await_count == 2
    sleep_mock.assert_awaited()
    assert result is message


@pytest.mark.asyncio
async def test_safe_send_message_respects_retry_after(mocker):
    message = SimpleNamespace(message_id=1)
    send = AsyncMock(side_effect=[RetryAfter(0.5), message])
    bot = SimpleNamespace(send_message=send)
    sleep_mock = mocker.patch("asyncio.sleep", new=AsyncMock())

    result = await safe_send_message(bot, chat_id=1, text="x", base_delay=0)

    assert send.await_count == 2
    # First sleep uses retry_after from the exception (approx 0.5)
    assert sleep_mock.await_args.args[0] >= 0.5
    assert result is message


@pytest.mark.asyncio
async def test_safe_send_message_raises_after_exhausting_attempts(mocker):
    send = AsyncMock(side_effect=NetworkError("down"))
    bot = SimpleNamespace(send_message=send)
    mocker.patch("asyncio.sleep", new=AsyncMock())

    with pytest.raises(NetworkError):
        await safe_send_message(bot, chat_id=1, text="x", max_attempts=3)

    assert send.await_count == 3


@pytest.mark.asyncio
async def test_safe_send_message_requires_text():
    with pytest.raises(ValueError):
        await safe_send_message(SimpleNamespace(), chat_id=1)


@pytest.mark.asyncio
async def test_call_with_retries_does_not_retry_other_errors():
    send = AsyncMock(side_effect=ValueError("bad payload"))

    with pytest.raises(ValueError):
        await call_with_retries(send)

    assert send.await_count == 1


@pytest.mark.asyncio
async def test_safe_send_attachment_reopens_path_on_retry(mocker, tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"video")
    reads = []

    async def send_video(chat_id, video, **kwargs):
        reads.append(video.read())
        if len(reads) == 1:
            raise TimedOut()
        return SimpleNamespace(message_id=2)

    mocker.patch("asyncio.sleep", new=AsyncMock())
    bot = SimpleNamespace(send_video=send_video)

    result = await safe_send_attachment(bot, "send_video", "video", path, chat_id=9)

    assert reads == [b"video", b"video"]
    assert result.message_id == 2


@pytest.mark.asyncio
async def test_safe_send_message_does_not_retry_bad_request(mocker):
    send = AsyncMock(side_effect=BadRequest("Can't parse entities: unexpected end"))
    bot = SimpleNamespace(send_message=send)
    sleep_mock = mocker.patch("asyncio.sleep", new=AsyncMock())

    with pytest.raises(BadRequest):
        await safe_send_message(bot, chat_id=1, text="x")

    send.assert_awaited_once()
    sleep_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_safe_send_attachment_does_not_retry_bad_request(mocker):
    send_video = AsyncMock(side_effect=BadRequest("Request Entity Too Large"))
    bot = SimpleNamespace(send_video=send_video)
    sleep_mock = mocker.patch("asyncio.sleep", new=AsyncMock())

    with pytest.raises(BadRequest):
        await safe_send_attachment(bot, "send_video", "video", b"data", chat_id=1)

    send_video.assert_awaited_once()
    sleep_mock.assert_not_awaited()
