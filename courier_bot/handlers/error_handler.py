# courier_bot/handlers/error_handler.py

import json
import time
import traceback

from telegram import Update
from telegram.error import NetworkError, TimedOut
from telegram.ext import ContextTypes

from ..config import logger

TRANSIENT_LOG_INTERVAL_SECONDS = 60.0

# error type name -> monotonic time of the last warning logged for it
_LAST_TRANSIENT_LOG: dict[str, float] = {}


def _should_log_transient(error: Exception) -> bool:
    key = type(error).__name__
    now = time.monotonic()
    last = _LAST_TRANSIENT_LOG.get(key)
    if last is not None and now - last < TRANSIENT_LOG_INTERVAL_SECONDS:
        return False
    _LAST_TRANSIENT_LOG[key] = now
    return True


async def global_error_handler(
    update: object, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Catches all unhandled exceptions and logs them with the update that caused
    them. Polling hiccups (timeouts, dropped connections) are logged as a
    throttled warning instead of a full report.
    """
    error = context.error
    if not error:
        logger.warning("Error handler was called but context.error is None.")
        return

    if isinstance(error, (NetworkError, TimedOut)) and not isinstance(update, Update):
        if _should_log_transient(error):
            logger.warning(f"Transient network error: {error}")
        return

    logger.error("An unhandled exception occurred:", exc_info=error)

    tb_string = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    update_str = update.to_dict() if isinstance(update, Update) else str(update)
    context_message = (
        f"An exception was raised while handling an update\n"
        f"update = {json.dumps(update_str, indent=2, ensure_ascii=False, default=str)}\n\n"
        f"context.chat_data = {context.chat_data}\n\n"
        f"context.user_data = {context.user_data}\n\n"
        f"Traceback:\n{tb_string}"
    )
    logger.error(f"DETAILED EXCEPTION REPORT:\n{context_message}")

    # Plain text so a formatting problem cannot hide the apology.
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(
                text=(
                    "❌ An unexpected error occurred.\n\n"
                    "I'm sorry, but I encountered a problem while processing your "
                    "request. Please try again later."
                )
            )
        except Exception as e:
            logger.error(f"Failed to send the user-facing error message: {e}")
