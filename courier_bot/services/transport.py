# courier_bot/services/transport.py

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest

from ..config import logger
from ..utils import safe_send_attachment, safe_send_message

_MARKDOWN_ESCAPE = re.compile(r"\\([_*\[\]()~`>#+\-=|{}.!\\])")


class AttachmentKind(str, Enum):
    IMAGE = "image"
    ANIMATION = "animation"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"


@dataclass(frozen=True)
class InboundEvent:
    """A transport-neutral view of one incoming chat message."""

    conversation_id: int | str
    text: str = ""
    has_attachment: bool = False
    attachment_bytes: bytes | None = None
    attachment_kind: AttachmentKind | None = None


class ChatTransport(Protocol):
    async def send_text(self, conversation_id: int | str, text: str) -> None: ...

    async def send_attachment(
        self,
        conversation_id: int | str,
        payload: bytes | Path,
        *,
        kind: AttachmentKind,
        filename: str | None = None,
        as_document: bool = False,
        caption: str | None = None,
    ) -> None: ...


# method name and payload keyword for each Bot.send_* call
_SEND_METHODS: dict[AttachmentKind, tuple[str, str]] = {
    AttachmentKind.STICKER: ("send_sticker", "sticker"),
    AttachmentKind.IMAGE: ("send_photo", "photo"),
    AttachmentKind.ANIMATION: ("send_animation", "animation"),
    AttachmentKind.VIDEO: ("send_video", "video"),
    AttachmentKind.AUDIO: ("send_audio", "audio"),
    AttachmentKind.DOCUMENT: ("send_document", "document"),
}


def strip_markdown_escapes(text: str) -> str:
    """Undoes ``escape_markdown(..., version=2)`` for a plain-text resend."""
    return _MARKDOWN_ESCAPE.sub(r"\1", text)


def _is_entity_parse_error(error: BadRequest) -> bool:
    return "can't parse entities" in str(error).lower()


class TelegramTransport:
    """Sends bot output through a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(self, conversation_id: int | str, text: str) -> None:
        try:
            await safe_send_message(
                self.bot,
                chat_id=conversation_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except BadRequest as e:
            if not _is_entity_parse_error(e):
                raise
            logger.warning(
                f"[TRANSPORT] MarkdownV2 rejected for chat {conversation_id}; "
                "resending as plain text."
            )
            await safe_send_message(
                self.bot, chat_id=conversation_id, text=strip_markdown_escapes(text)
            )

    async def send_attachment(
        self,
        conversation_id: int | str,
        payload: bytes | Path,
        *,
        kind: AttachmentKind,
        filename: str | None = None,
        as_document: bool = False,
        caption: str | None = None,
    ) -> None:
        if as_document:
            kind = AttachmentKind.DOCUMENT
        method_name, field = _SEND_METHODS[kind]

        kwargs: dict[str, object] = {}
        if caption and kind is not AttachmentKind.STICKER:
            kwargs["caption"] = caption
        if filename and kind in (
            AttachmentKind.DOCUMENT,
            AttachmentKind.VIDEO,
            AttachmentKind.AUDIO,
            AttachmentKind.ANIMATION,
        ):
            kwargs["filename"] = filename
        if kind is AttachmentKind.VIDEO:
            kwargs["supports_streaming"] = True

        logger.info(f"[TRANSPORT] {method_name} to chat {conversation_id}")
        await safe_send_attachment(
            self.bot, method_name, field, payload, chat_id=conversation_id, **kwargs
        )
