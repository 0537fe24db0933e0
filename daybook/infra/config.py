from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/daybook.db")
DEFAULT_DIGEST_TIME = "09:00"


@dataclass(frozen=True)
class Settings:
    bot_token: str | None
    db_path: Path
    cron_secret: str | None
    webapp_url: str | None
    default_digest_time: str
    tz_offset_limit_minutes: int
    calendar_default_offset_minutes: int
    cron_users_batch_limit: int
    cron_minute_tolerance: int
    cron_process_batch_size: int
    remind_missing_lookback_days: int
    telegram_button_text_limit: int
    telegram_button_text_truncate_to: int
    notes_default_page_size: int
    notes_max_page_size: int
    google_calendar_id: str
    google_client_id: str | None
    google_client_secret: str | None
    google_refresh_token: str | None
    calendar_timeout_seconds: float
    llm_api_key: str | None
    llm_base_url: str
    llm_model: str
    llm_timeout_seconds: float
    llm_classifier_max_tokens: int
    llm_classifier_temperature: float

    @property
    def calendar_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_refresh_token)

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key)


_DEV_ENVS = {"dev", "development", "local"}


def resolve_env_label(raw_env: dict[str, str] | None = None) -> str:
    source = raw_env if raw_env is not None else os.environ
    env = source.get("APP_ENV", "prod").strip().lower()
    return "dev" if env in _DEV_ENVS else "prod"


def load_settings(raw_env: dict[str, str] | None = None) -> Settings:
    if raw_env is None:
        load_dotenv()
    env = raw_env if raw_env is not None else os.environ

    db_path = Path(env.get("BOT_DB_PATH", DEFAULT_DB_PATH))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return Settings(
        bot_token=env.get("TELEGRAM_BOT_TOKEN") or env.get("BOT_TOKEN") or None,
        db_path=db_path,
        cron_secret=env.get("CRON_SECRET") or None,
        webapp_url=env.get("WEBAPP_URL") or None,
        default_digest_time=env.get("DEFAULT_DIGEST_TIME") or DEFAULT_DIGEST_TIME,
        tz_offset_limit_minutes=_parse_bounded_int(env.get("TZ_OFFSET_LIMIT_MINUTES"), 14 * 60, 0, 24 * 60),
        calendar_default_offset_minutes=_parse_bounded_int(
            env.get("CALENDAR_DEFAULT_OFFSET_MINUTES"),
            180,
            -14 * 60,
            14 * 60,
        ),
        cron_users_batch_limit=_parse_bounded_int(env.get("CRON_USERS_BATCH_LIMIT"), 5000, 1, 20_000),
        cron_minute_tolerance=_parse_bounded_int(env.get("CRON_MINUTE_TOLERANCE"), 5, 0, 30),
        cron_process_batch_size=_parse_bounded_int(env.get("CRON_PROCESS_BATCH_SIZE"), 25, 1, 500),
        remind_missing_lookback_days=_parse_bounded_int(env.get("REMIND_MISSING_LOOKBACK_DAYS"), 7, 1, 30),
        telegram_button_text_limit=_parse_bounded_int(env.get("TELEGRAM_BUTTON_TEXT_LIMIT"), 40, 10, 128),
        telegram_button_text_truncate_to=_parse_bounded_int(
            env.get("TELEGRAM_BUTTON_TEXT_TRUNCATE_TO"),
            37,
            5,
            127,
        ),
        notes_default_page_size=_parse_bounded_int(env.get("NOTES_DEFAULT_PAGE_SIZE"), 10, 1, 50),
        notes_max_page_size=_parse_bounded_int(env.get("NOTES_MAX_PAGE_SIZE"), 50, 1, 200),
        google_calendar_id=env.get("GOOGLE_CALENDAR_ID") or "primary",
        google_client_id=env.get("GOOGLE_OAUTH_CLIENT_ID") or None,
        google_client_secret=env.get("GOOGLE_OAUTH_CLIENT_SECRET") or None,
        google_refresh_token=env.get("GOOGLE_REFRESH_TOKEN") or None,
        calendar_timeout_seconds=_parse_optional_float(env.get("CALENDAR_TIMEOUT_SECONDS"), 10.0),
        llm_api_key=env.get("LLM_API_KEY") or None,
        llm_base_url=env.get("LLM_BASE_URL", "https://api.openai.com/v1"),
        llm_model=env.get("LLM_MODEL", "gpt-4o-mini"),
        llm_timeout_seconds=_parse_optional_float(env.get("LLM_TIMEOUT_SECONDS"), 30.0),
        llm_classifier_max_tokens=_parse_bounded_int(env.get("LLM_CLASSIFIER_MAX_TOKENS"), 1024, 128, 4096),
        llm_classifier_temperature=_parse_bounded_float(env.get("LLM_CLASSIFIER_TEMPERATURE"), 0.1, 0.0, 1.0),
    )


def _parse_optional_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return float(trimmed)


def _parse_bounded_int(value: str | None, default: int, minimum: int, maximum: int) -> int:
    # Out-of-range or garbage values fall back to the default instead of failing startup.
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        LOGGER.warning("Invalid integer setting %r, using default %s", value, default)
        return default
    if parsed != parsed or parsed < minimum or parsed > maximum:
        return default
    return int(parsed)


def _parse_bounded_float(value: str | None, default: float, minimum: float, maximum: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    if parsed != parsed or parsed < minimum or parsed > maximum:
        return default
    return parsed
