# tests/handlers/test_command_handlers.py

import pytest
from telegram import Update
from telegram.constants import ParseMode

from courier_bot.handlers.command_handlers import help_command
from courier_bot.ui.messages import get_help_message_text


@pytest.mark.asyncio
async def test_help_command_sends_menu(make_message, context):
    update = Update(update_id=1, message=make_message("/help"))

    await help_command(update, context)

    context.bot.send_message.assert_awaited_once_with(
        chat_id=456, text=get_help_message_text(), parse_mode=ParseMode.MARKDOWN_V2
    )


@pytest.mark.asyncio
async def test_help_command_ignores_updates_without_message(context):
    await help_command(Update(update_id=1), context)

    context.bot.send_message.assert_not_awaited()


def test_help_text_lists_every_feature():
    text = get_help_message_text()
    for phrase in ("search <movie name>", "sticker", "removebg", "audio"):
        assert phrase in text
