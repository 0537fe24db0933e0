"""Process-wide Telegram bot handle.

The ``telegram.Bot`` is built on first use from the configured token and
reused for the lifetime of the process; it is never torn down mid-process
except through ``shutdown_bot`` at application exit. Components receive it
through ``Messenger`` rather than reaching for it themselves.
"""

from __future__ import annotations

import logging
import threading

from telegram import Bot

LOGGER = logging.getLogger(__name__)

_lock = threading.Lock()
_bot: Bot | None = None


def get_bot(token: str | None) -> Bot:
    global _bot
    if _bot is not None:
        return _bot
    with _lock:
        if _bot is None:
            if not token:
                raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
            _bot = Bot(token)
            LOGGER.info("Telegram bot client created")
        return _bot


def set_bot(bot: Bot | None) -> None:
    """Install a ready bot (the polling Application's, or a fake in tests)."""
    global _bot
    with _lock:
        _bot = bot


async def shutdown_bot() -> None:
    global _bot
    with _lock:
        bot, _bot = _bot, None
    if bot is None:
        return
    try:
        await bot.shutdown()
    except Exception:
        LOGGER.exception("Failed to shutdown bot client")
