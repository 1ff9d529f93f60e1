"""
MindArsenal Coach — Entry Point.

Single entry point: `python main.py` starts the Telegram bot (and the
WhatsApp webhook when Twilio is configured).
"""

import logging
import os
import sys
import threading

from src.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger("mindarsenal")


def _log_uncaught(exc_type, exc, tb) -> None:
    logger.critical("uncaughtException", exc_info=(exc_type, exc, tb))


def _log_uncaught_thread(args: threading.ExceptHookArgs) -> None:
    """A dead worker thread ends the whole process; the supervisor restarts it."""
    logger.critical(
        "uncaughtException in thread %s",
        args.thread.name if args.thread else "?",
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )
    logging.shutdown()
    os._exit(1)


def install_exception_hooks() -> None:
    sys.excepthook = _log_uncaught
    threading.excepthook = _log_uncaught_thread


if __name__ == "__main__":
    install_exception_hooks()

    from src.bot.telegram_bot import main

    main()
