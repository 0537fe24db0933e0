from __future__ import annotations

import logging
from typing import Any, Sequence

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo
from telegram.error import BadRequest, TelegramError

LOGGER = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 3500
FALLBACK_CHUNK_SIZE = 2000
EMPTY_MESSAGE_PLACEHOLDER = "(пустое сообщение)"


def chunk_text(text: str, max_len: int = MAX_CHUNK_SIZE) -> list[str]:
    chunks: list[str] = []
    remaining = text or ""
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len + 1)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, max_len + 1)
        if split_at <= 0:
            split_at = max_len
        chunk = remaining[:split_at].rstrip()
        if not chunk:
            chunk = remaining[:max_len]
            split_at = max_len
        chunks.append(chunk)
        remaining = remaining[split_at:].lstrip("\n ")
    return chunks


def callback_keyboard(rows: Sequence[tuple[str, str]]) -> InlineKeyboardMarkup:
    """One button per row: ``(text, callback_data)``."""
    return InlineKeyboardMarkup([[InlineKeyboardButton(text, callback_data=data)] for text, data in rows])


def webapp_keyboard(label: str, url: str | None) -> InlineKeyboardMarkup | None:
    if not url:
        return None
    return InlineKeyboardMarkup([[InlineKeyboardButton(label, web_app=WebAppInfo(url=url))]])


class Messenger:
    """Best-effort sender on top of a shared ``telegram.Bot``.

    ``send_message`` never raises for Telegram API failures: the failure is
    logged and reported as ``False`` so one recipient cannot break a batch.
    """

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    @property
    def bot(self) -> Bot:
        return self._bot

    async def send_message(
        self,
        chat_id: int,
        text: str | None,
        *,
        parse_mode: str | None = None,
        reply_markup: Any = None,
    ) -> bool:
        payload = text if text and text.strip() else EMPTY_MESSAGE_PLACEHOLDER
        chunks = chunk_text(payload, max_len=MAX_CHUNK_SIZE)
        for index, chunk in enumerate(chunks):
            markup = reply_markup if index == 0 else None
            try:
                await self._bot.send_message(
                    chat_id=chat_id,
                    text=chunk,
                    parse_mode=parse_mode,
                    reply_markup=markup,
                )
            except BadRequest as exc:
                if "Message is too long" not in str(exc):
                    LOGGER.warning("Telegram rejected message: chat_id=%s error=%s", chat_id, exc)
                    return False
                LOGGER.warning("Telegram rejected message chunk as too long; splitting further.")
                if not await self._send_subchunks(chat_id, chunk, parse_mode=parse_mode, reply_markup=markup):
                    return False
            except TelegramError as exc:
                LOGGER.warning("Telegram send failed: chat_id=%s error=%s", chat_id, exc)
                return False
        return True

    async def _send_subchunks(self, chat_id: int, chunk: str, *, parse_mode: str | None, reply_markup: Any) -> bool:
        for index, subchunk in enumerate(chunk_text(chunk, max_len=FALLBACK_CHUNK_SIZE)):
            try:
                await self._bot.send_message(
                    chat_id=chat_id,
                    text=subchunk,
                    parse_mode=parse_mode,
                    reply_markup=reply_markup if index == 0 else None,
                )
            except TelegramError as exc:
                LOGGER.warning("Telegram send failed after split: chat_id=%s error=%s", chat_id, exc)
                return False
        return True
