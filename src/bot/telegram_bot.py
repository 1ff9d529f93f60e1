"""
MindArsenal Coach — Telegram Bot.

Thin polling adapter: every text message (commands included) goes through
the channel-agnostic conversation engine, and the replies are sent back in
order. The bot's job queue also drives the prompt tick, the weekly report
and the watchdog.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from datetime import time as dt_time

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core import messages
from src.core.conversation import COMMANDS, handle_message
from src.core.delivery import ChannelRouter
from src.core.scheduler import (
    PROMPT_TICK_JOB,
    WATCHDOG_JOB,
    WEEKLY_REPORT_JOB,
    check_heartbeat,
    run_prompt_tick,
    run_weekly_report,
    send_startup_ping,
)
from src.data.db import RuntimeState, SnapshotDB, UserStore
from src.data.models import UserSeed

logger = logging.getLogger(__name__)

CHANNEL = "telegram"


def identity_key(chat_id: int) -> str:
    return f"{CHANNEL}:{chat_id}"


def _seed_from_update(update: Update) -> tuple[str, UserSeed]:
    chat = update.effective_chat
    user = update.effective_user
    first_name = (user.first_name if user else None) or (chat.first_name or "")
    return identity_key(chat.id), UserSeed(
        channel=CHANNEL, address=str(chat.id), first_name=first_name,
    )


async def _reply(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    """Send one reply, counting the outcome in the runtime record."""
    runtime: RuntimeState | None = context.bot_data.get("runtime")
    try:
        await update.effective_message.reply_text(text)
    except Exception as exc:
        logger.error("send_error chat_id=%s err=%s", update.effective_chat.id, exc)
        if runtime is not None:
            runtime.record_send(False)
        return
    logger.info("msg_out chat_id=%s text_len=%d", update.effective_chat.id, len(text))
    if runtime is not None:
        runtime.record_send(True)


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle any text message or command via the conversation engine."""
    if update.effective_message is None or update.effective_message.text is None:
        return
    store: UserStore = context.bot_data["store"]
    key, seed = _seed_from_update(update)

    replies = await handle_message(store, key, update.effective_message.text, seed)
    for text in replies:
        await _reply(update, context, text)


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log the failure and answer in persona instead of going silent."""
    logger.error("Unhandled error while processing update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message is not None:
        try:
            await update.effective_message.reply_text(messages.INTERNAL_ERROR)
        except Exception as exc:
            logger.warning("Could not send error reply: %s", exc)


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


async def _prompt_tick_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    await run_prompt_tick(bd["store"], bd["router"], bd["runtime"])


async def _weekly_report_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    await run_weekly_report(bd["store"], bd["router"], bd["runtime"])


async def _watchdog_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    runtime: RuntimeState = context.bot_data["runtime"]
    stale = check_heartbeat(runtime, settings.WATCHDOG_MAX_AGE_SECONDS)
    runtime.mark_job(WATCHDOG_JOB, "missed" if stale is not None else "ok")


def _setup_jobs(app: Application) -> None:
    """Register the minute tick, the watchdog and the weekly report."""
    # Start the tick on the next minute boundary so HH:MM matches land once.
    first = 60 - datetime.now().second
    app.job_queue.run_repeating(
        _prompt_tick_job,
        interval=settings.TICK_INTERVAL_SECONDS,
        first=first,
        name=PROMPT_TICK_JOB,
    )
    app.job_queue.run_repeating(
        _watchdog_job,
        interval=settings.WATCHDOG_INTERVAL_SECONDS,
        first=settings.WATCHDOG_INTERVAL_SECONDS,
        name=WATCHDOG_JOB,
    )

    # Server-local wall clock, same as the prompt tick.
    local_tz = datetime.now().astimezone().tzinfo
    app.job_queue.run_daily(
        _weekly_report_job,
        time=dt_time(hour=settings.WEEKLY_REPORT_HOUR, minute=0, tzinfo=local_tz),
        days=(settings.WEEKLY_REPORT_WEEKDAY,),
        name=WEEKLY_REPORT_JOB,
    )
    logger.info(
        "Weekly report scheduled for day %d at %02d:00",
        settings.WEEKLY_REPORT_WEEKDAY, settings.WEEKLY_REPORT_HOUR,
    )


def _log_async_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    logger.critical(
        "unhandledRejection: %s", context.get("message"), exc_info=context.get("exception"),
    )


async def _post_init(app: Application) -> None:
    asyncio.get_running_loop().set_exception_handler(_log_async_exception)
    if settings.STARTUP_PING:
        await send_startup_ping(app.bot_data["store"], app.bot_data["router"])
    logger.info("boot: MindArsenal bot running, polling started")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: UserStore | None = None,
    runtime: RuntimeState | None = None,
    router: ChannelRouter | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers and jobs.

    Args:
        store: User store. Defaults to one backed by settings.DATABASE_PATH.
        runtime: Runtime record. Defaults to the same database.
        router: Outbound fan-out. Defaults to Telegram (+ WhatsApp if configured).
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .read_timeout(settings.SEND_TIMEOUT_SECONDS)
        .write_timeout(settings.SEND_TIMEOUT_SECONDS)
        .concurrent_updates(True)
        .post_init(_post_init)
        .build()
    )

    if store is None or runtime is None:
        db = SnapshotDB()
        store = store or UserStore(db)
        runtime = runtime or RuntimeState(db)

    if router is None:
        from src.adapters.telegram_notifier import TelegramNotifier

        router = ChannelRouter(runtime=runtime)
        router.register(CHANNEL, TelegramNotifier(app.bot))
        if settings.whatsapp_enabled:
            from src.adapters.whatsapp_notifier import WhatsAppNotifier
            router.register("whatsapp", WhatsAppNotifier.from_settings())

    # Store shared state in bot_data for handler and job access
    app.bot_data["store"] = store
    app.bot_data["runtime"] = runtime
    app.bot_data["router"] = router

    # Edited messages are not new input.
    app.add_handler(CommandHandler(list(COMMANDS), handle_text, filters=filters.UpdateType.MESSAGE))
    # Unknown commands and free text both go through the engine.
    app.add_handler(MessageHandler(filters.UpdateType.MESSAGE & filters.TEXT, handle_text))
    app.add_error_handler(_on_error)

    _setup_jobs(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app, start the webhook if enabled, start polling."""
    logger.info("Starting MindArsenal Coach...")
    app = build_app()

    if settings.whatsapp_enabled:
        from src.bot.whatsapp_webhook import start_webhook_thread
        start_webhook_thread(app.bot_data["store"])

    app.run_polling()


if __name__ == "__main__":
    main()
