# courier_bot/__main__.py

import re

# Ensure PTB env flags are set before importing python-telegram-bot
from courier_bot import _ptb_env  # noqa: F401
from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    MessageHandler,
    filters,
)

from courier_bot.config import get_configuration, logger
from courier_bot.handlers.command_handlers import help_command
from courier_bot.handlers.error_handler import global_error_handler
from courier_bot.handlers.message_handlers import handle_message
from courier_bot.services.scrapers import default_site_config
from courier_bot.services.transport import TelegramTransport
from courier_bot.state import post_init, post_shutdown
from courier_bot.workflows import DialogueController, SessionStore


def register_handlers(application: Application) -> None:
    """
    Registers the help command, the catch-all message handler and the global
    error handler.
    """
    application.add_handler(
        MessageHandler(
            filters.Regex(re.compile(r"^/?(help|start)$", re.IGNORECASE)), help_command
        )
    )

    # Text, captions and media all flow through the dialogue controller.
    application.add_handler(
        MessageHandler(
            (filters.TEXT | filters.PHOTO | filters.ANIMATION | filters.Document.ALL
             | filters.VIDEO | filters.AUDIO | filters.VOICE | filters.Sticker.ALL)
            & ~filters.UpdateType.EDITED,
            handle_message,
        )
    )

    application.add_error_handler(global_error_handler)

    logger.info("All handlers have been registered.")


def main() -> None:
    """
    Main function to initialize and run the Telegram bot.
    """
    logger.info("Starting bot...")

    settings = get_configuration()

    application = (
        ApplicationBuilder()
        .token(settings.token)
        .concurrent_updates(True)  # per-conversation ordering is kept by the store locks
        .post_init(post_init)  # starts the session sweeper
        .post_shutdown(post_shutdown)  # cancels the sweeper and running transfers
        .build()
    )

    store = SessionStore(ttl=settings.session_ttl_seconds)
    controller = DialogueController(
        store,
        TelegramTransport(application.bot),
        settings,
        site_name=default_site_config()["site_name"],
    )

    application.bot_data["SETTINGS"] = settings
    application.bot_data["SESSION_STORE"] = store
    application.bot_data["DIALOGUE_CONTROLLER"] = controller

    register_handlers(application)

    logger.info("Bot startup complete. Starting polling...")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
