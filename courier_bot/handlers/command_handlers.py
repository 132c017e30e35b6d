# courier_bot/handlers/command_handlers.py

from telegram import Message, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from ..config import logger
from ..ui.messages import get_help_message_text
from ..utils import safe_send_message


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Sends the feature menu; ``/start`` is routed here as well."""
    if not isinstance(update.message, Message):
        return

    chat = update.effective_chat
    if not chat:
        logger.warning("help_command was triggered but could not find an effective_chat.")
        return

    await safe_send_message(
        context.bot,
        chat_id=chat.id,
        text=get_help_message_text(),
        parse_mode=ParseMode.MARKDOWN_V2,
    )
