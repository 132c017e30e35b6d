# courier_bot/state.py

import asyncio

from telegram.ext import Application

from .config import SESSION_SWEEP_INTERVAL_SECONDS, logger


async def post_init(application: Application) -> None:
    """
    Starts the periodic session sweeper once the application is initialized.
    This function is called by the ApplicationBuilder.
    """
    store = application.bot_data["SESSION_STORE"]
    application.bot_data["SESSION_SWEEPER"] = asyncio.create_task(
        store.run_sweeper(SESSION_SWEEP_INTERVAL_SECONDS), name="session-sweeper"
    )
    logger.info(
        f"Session sweeper started (every {SESSION_SWEEP_INTERVAL_SECONDS}s, "
        f"TTL {store.ttl:.0f}s)."
    )


async def post_shutdown(application: Application) -> None:
    """
    Stops the sweeper and cancels in-flight transfers before the bot exits.
    Sessions are in-memory only and are dropped with the process.
    """
    logger.info("--- Shutting down: Signalling active tasks to stop ---")

    sweeper = application.bot_data.pop("SESSION_SWEEPER", None)
    if sweeper is not None and not sweeper.done():
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)

    controller = application.bot_data.get("DIALOGUE_CONTROLLER")
    if controller is None:
        logger.info("No dialogue controller registered; nothing to stop.")
    else:
        await controller.shutdown()

    logger.info("--- All active tasks stopped. Shutdown complete. ---")
