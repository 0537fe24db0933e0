from __future__ import annotations

import asyncio
import logging
import sys
import warnings
from datetime import datetime, timezone

from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters
from telegram.warnings import PTBUserWarning

from daybook.bot import handlers
from daybook.core.digest import TOGGLE_EVENT_PREFIX
from daybook.infra.bot_client import set_bot
from daybook.infra.config import Settings, load_settings, resolve_env_label
from daybook.infra.llm import IntentClassifier, OpenAIClient
from daybook.infra.logging_config import configure_logging
from daybook.infra.request_context import RequestContext, log_event
from daybook.infra.storage import SQLiteStore
from daybook.web.api import build_calendar

LOGGER = logging.getLogger(__name__)


def _register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", handlers.start))
    application.add_handler(
        CallbackQueryHandler(handlers.toggle_event_callback, pattern=f"^{TOGGLE_EVENT_PREFIX}")
    )
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handlers.text_message))


def build_classifier(settings: Settings) -> IntentClassifier | None:
    if not settings.llm_enabled:
        return None
    client = OpenAIClient(
        api_key=settings.llm_api_key or "",
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_seconds=settings.llm_timeout_seconds,
        max_retries=0,
    )
    return IntentClassifier(
        client,
        max_tokens=settings.llm_classifier_max_tokens,
        temperature=settings.llm_classifier_temperature,
    )


def build_application(settings: Settings, store: SQLiteStore) -> Application:
    if not settings.bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
    warnings.filterwarnings("ignore", message="No JobQueue set up", category=PTBUserWarning)
    application = Application.builder().token(settings.bot_token).build()
    application.bot_data["settings"] = settings
    application.bot_data["store"] = store
    application.bot_data["calendar"] = build_calendar(settings)
    application.bot_data["classifier"] = build_classifier(settings)
    _register_handlers(application)
    application.add_error_handler(handlers.error_handler)
    return application


def main() -> None:
    configure_logging()
    env_label = resolve_env_label()
    try:
        settings = load_settings()
        store = SQLiteStore(settings.db_path, default_digest_time=settings.default_digest_time)
        application = build_application(settings, store)
    except RuntimeError as exc:
        LOGGER.exception("Startup failed: %s", exc)
        raise SystemExit(str(exc)) from exc
    set_bot(application.bot)

    startup_context = RequestContext(
        correlation_id="startup",
        user_id=0,
        chat_id=0,
        ts=datetime.now(timezone.utc),
        env=env_label,
    )
    log_event(
        LOGGER,
        startup_context,
        component="startup",
        event="startup.check",
        python_version=sys.version.split()[0],
        integrations={"calendar": settings.calendar_enabled, "llm": settings.llm_enabled},
    )

    async def _post_shutdown(_app: Application) -> None:
        set_bot(None)
        store.close()

    application.post_shutdown = _post_shutdown

    LOGGER.info("Bot started")
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())
    application.run_polling()


if __name__ == "__main__":
    main()
