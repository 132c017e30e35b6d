# tests/services/test_transport.py

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest

from courier_bot.services.transport import (
    AttachmentKind,
    TelegramTransport,
    strip_markdown_escapes,
)


def test_strip_markdown_escapes():
    assert strip_markdown_escapes(r"Done\! 1\. *x*") == "Done! 1. *x*"


@pytest.mark.asyncio
async def test_send_text_uses_markdown_v2():
    bot = SimpleNamespace(send_message=AsyncMock())
    await TelegramTransport(bot).send_text(7, "hi\\.")

    bot.send_message.assert_awaited_once_with(
        chat_id=7, text="hi\\.", parse_mode=ParseMode.MARKDOWN_V2
    )


@pytest.mark.asyncio
async def test_send_text_falls_back_to_plain_text_on_parse_error():
    bot = SimpleNamespace(
        send_message=AsyncMock(
            side_effect=[BadRequest("Can't parse entities: unexpected end"), None]
        )
    )
    await TelegramTransport(bot).send_text(7, "Done\\!")

    assert bot.send_message.await_count == 2
    assert bot.send_message.await_args.kwargs == {"chat_id": 7, "text": "Done!"}


@pytest.mark.asyncio
async def test_send_text_reraises_other_bad_requests():
    bot = SimpleNamespace(send_message=AsyncMock(side_effect=BadRequest("Chat not found")))

    with pytest.raises(BadRequest):
        await TelegramTransport(bot).send_text(7, "x")


@pytest.mark.asyncio
async def test_send_sticker_bytes():
    bot = SimpleNamespace(send_sticker=AsyncMock())
    await TelegramTransport(bot).send_attachment(
        7, b"WEBP", kind=AttachmentKind.STICKER, caption="ignored"
    )

    bot.send_sticker.assert_awaited_once_with(chat_id=7, sticker=b"WEBP")


@pytest.mark.asyncio
async def test_send_video_from_path_streams_file(tmp_path):
    path = tmp_path / "movie.mp4"
    path.write_bytes(b"video")
    received = {}

    async def send_video(**kwargs):
        received.update(kwargs)
        received["bytes"] = kwargs["video"].read()

    bot = SimpleNamespace(send_video=send_video)
    await TelegramTransport(bot).send_attachment(
        7, path, kind=AttachmentKind.VIDEO, filename="movie.mp4", caption="Here"
    )

    assert received["bytes"] == b"video"
    assert received["filename"] == "movie.mp4"
    assert received["caption"] == "Here"
    assert received["supports_streaming"] is True


@pytest.mark.asyncio
async def test_as_document_forces_send_document():
    bot = SimpleNamespace(send_video=AsyncMock(), send_document=AsyncMock())
    await TelegramTransport(bot).send_attachment(
        7, b"data", kind=AttachmentKind.VIDEO, filename="a.mkv", as_document=True
    )

    bot.send_video.assert_not_awaited()
    bot.send_document.assert_awaited_once_with(
        chat_id=7, document=b"data", filename="a.mkv"
    )
