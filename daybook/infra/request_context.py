from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from telegram import Update

LOGGER = logging.getLogger(__name__)

_DEV_ENVS = {"dev", "development", "local"}
_SECRET_KEYS = {"authorization", "api_key", "apikey", "token", "password", "secret", "headers", "cookie"}
_TEXT_KEYS = {"text", "prompt", "input_text", "message", "journal_text", "content"}
_RAW_TEXT_KEYS = {"where", "exc_type", "job", "intent", "handler", "date", "state"}


@dataclass
class RequestContext:
    correlation_id: str
    user_id: str | int
    chat_id: str | int
    ts: datetime
    env: str
    meta: dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.monotonic)
    status: str = "ok"


def _truncate_text(text: str, limit: int = 120) -> str:
    cleaned = text.replace("\n", " ").strip()
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit].rstrip() + "…"


def _hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _env_label() -> str:
    env = os.getenv("APP_ENV", "prod").strip().lower()
    return "dev" if env in _DEV_ENVS else "prod"


def start_request(update: Update | None) -> RequestContext:
    user = update.effective_user if update else None
    chat = update.effective_chat if update else None
    return RequestContext(
        correlation_id=str(uuid.uuid4()),
        user_id=user.id if user else 0,
        chat_id=chat.id if chat else 0,
        ts=datetime.now(timezone.utc),
        env=_env_label(),
    )


def start_cron_context(job: str, *, now: datetime | None = None) -> RequestContext:
    return RequestContext(
        correlation_id=f"cron-{job}-{uuid.uuid4().hex[:12]}",
        user_id=0,
        chat_id=0,
        ts=now or datetime.now(timezone.utc),
        env=_env_label(),
        meta={"job": job},
    )


def elapsed_ms(start_time: float) -> float:
    return max((time.monotonic() - start_time) * 1000, 0.01)


def safe_log_payload(request_context: RequestContext | None, data: Any) -> Any:
    env = request_context.env if request_context else "prod"

    def _safe_text(text: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text_len": len(text),
            "text_sha256": _hash_text(text),
        }
        if env == "dev":
            payload["text_preview"] = _truncate_text(text)
        return payload

    if isinstance(data, str):
        return _safe_text(data)
    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if key_lower in _SECRET_KEYS:
                sanitized[key] = "***"
                continue
            if key_lower in _RAW_TEXT_KEYS and isinstance(value, str):
                sanitized[key] = value
                continue
            if key_lower in _TEXT_KEYS:
                sanitized[key] = _safe_text(str(value))
                continue
            if isinstance(value, str):
                sanitized[key] = value
                continue
            sanitized[key] = safe_log_payload(request_context, value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [safe_log_payload(request_context, item) if not isinstance(item, str) else item for item in data]
    return data


def log_event(
    logger: logging.Logger,
    request_context: RequestContext | None,
    *,
    component: str,
    event: str,
    status: str = "ok",
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": request_context.correlation_id if request_context else "-",
        "component": component,
        "event": event,
        "status": status,
        "env": request_context.env if request_context else "prod",
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if fields:
        payload.update(safe_log_payload(request_context, fields))
    message = json.dumps(payload, ensure_ascii=False, default=str)
    if status == "error":
        logger.error(message)
    elif status == "refused":
        logger.warning(message)
    else:
        logger.info(message)


def log_error(
    logger: logging.Logger,
    request_context: RequestContext | None,
    *,
    component: str,
    where: str,
    exc: BaseException,
    extra: dict[str, Any] | None = None,
) -> None:
    env = request_context.env if request_context else "prod"
    exc_msg = str(exc) if env == "dev" else _truncate_text(str(exc))
    payload: dict[str, Any] = {
        "where": where,
        "exc_type": type(exc).__name__,
        "exc_msg": exc_msg,
        "user_id": request_context.user_id if request_context else 0,
    }
    if env == "dev":
        payload["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    if request_context is not None:
        request_context.status = "error"
        request_context.meta.setdefault("error", {"where": where, "exc_type": type(exc).__name__})
    if extra:
        payload.update(extra)
    log_event(logger, request_context, component=component, event="error", status="error", **payload)
