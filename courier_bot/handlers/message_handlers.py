# courier_bot/handlers/message_handlers.py

from telegram import Message, Update
from telegram.ext import ContextTypes

from ..config import logger
from ..services.transport import AttachmentKind, InboundEvent

# Only these kinds can trigger a media tool, so only they are fetched.
DOWNLOADED_KINDS = (AttachmentKind.IMAGE, AttachmentKind.ANIMATION)


def classify_attachment(message: Message) -> AttachmentKind | None:
    """Maps the media carried by a Telegram message to an ``AttachmentKind``."""
    if message.animation:
        return AttachmentKind.ANIMATION
    if message.sticker:
        return AttachmentKind.STICKER
    if message.photo:
        return AttachmentKind.IMAGE
    if message.video:
        return AttachmentKind.VIDEO
    if message.audio or message.voice:
        return AttachmentKind.AUDIO
    if message.document:
        mime_type = message.document.mime_type or ""
        if mime_type == "image/gif":
            return AttachmentKind.ANIMATION
        if mime_type.startswith("image/"):
            return AttachmentKind.IMAGE
        return AttachmentKind.DOCUMENT
    return None


async def _download_attachment(message: Message, kind: AttachmentKind) -> bytes:
    if kind is AttachmentKind.ANIMATION and message.animation:
        source = message.animation
    elif kind is AttachmentKind.IMAGE and message.photo:
        source = message.photo[-1]  # largest size
    else:
        source = message.document

    telegram_file = await source.get_file()
    return bytes(await telegram_file.download_as_bytearray())


async def build_inbound_event(message: Message) -> InboundEvent:
    kind = classify_attachment(message)
    attachment_bytes = None
    if kind in DOWNLOADED_KINDS:
        attachment_bytes = await _download_attachment(message, kind)

    return InboundEvent(
        conversation_id=message.chat_id,
        text=message.text or message.caption or "",
        has_attachment=kind is not None,
        attachment_bytes=attachment_bytes,
        attachment_kind=kind,
    )


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Converts every incoming text or media message into an ``InboundEvent`` and
    hands it to the dialogue controller.
    """
    message = update.message
    if not isinstance(message, Message):
        logger.warning("handle_message: Update received without a message. Ignoring.")
        return

    controller = context.bot_data.get("DIALOGUE_CONTROLLER")
    if controller is None:
        logger.error("handle_message: No dialogue controller in bot_data.")
        return

    event = await build_inbound_event(message)
    logger.info(
        f"Chat {event.conversation_id} sent "
        f"{event.attachment_kind.value if event.attachment_kind else 'text'}: "
        f"{event.text[:70]}"
    )
    await controller.handle_event(event)
