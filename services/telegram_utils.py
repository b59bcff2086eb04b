"""
Утилиты для работы с Telegram API: экранирование Markdown, безопасный edit_text,
тосты в виде самоудаляющихся сообщений, форматирование времени.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from aiogram import Bot
from aiogram.types import Message
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramRetryAfter

from services.feedback import FeedbackKind, Toast

logger = logging.getLogger(__name__)

# Сетевые ошибки, при которых имеет смысл повторить запрос
RETRYABLE_EXC = (TelegramNetworkError, TelegramRetryAfter)
MAX_EDIT_RETRIES = 3
RETRY_DELAY = 1.0


def escape_markdown(s: str) -> str:
    """
    Экранирует спецсимволы Markdown в пользовательском тексте.
    Использовать для всех полей из API (имена клиентов, адреса, тексты уведомлений).
    """
    if not s or not isinstance(s, str):
        return str(s) if s is not None else ""
    # Сначала \ — иначе двойное экранирование сломается
    s = s.replace("\\", "\\\\")
    for ch in "_*[]()`":
        s = s.replace(ch, f"\\{ch}")
    return s


def format_relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """Время уведомления относительно текущего: Just now, 5m ago, 3h ago, Yesterday, 4d ago."""
    now = now or datetime.now(timezone.utc)
    minutes = int((now - moment).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days}d ago"
    return moment.strftime("%d.%m.%Y")


async def safe_edit_text(
    message: Message,
    text: str,
    *,
    reply_markup=None,
    parse_mode: Optional[str] = "Markdown",
) -> bool:
    """
    edit_text, который не падает на "message is not modified" и повторяет
    запрос при сетевых ошибках (до MAX_EDIT_RETRIES раз).
    """
    for attempt in range(MAX_EDIT_RETRIES):
        try:
            await message.edit_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
            return True
        except RETRYABLE_EXC as e:
            if attempt >= MAX_EDIT_RETRIES - 1:
                logger.error("safe_edit_text: failed after %s attempts: %s", MAX_EDIT_RETRIES, e)
                raise
            wait = getattr(e, "retry_after", None) or RETRY_DELAY
            logger.warning("safe_edit_text: %s, retry in %.1fs (attempt %s/%s)", e, wait, attempt + 1, MAX_EDIT_RETRIES)
            await asyncio.sleep(wait)
        except TelegramBadRequest as e:
            msg = str(e).lower()
            if "message is not modified" in msg or "message to edit not found" in msg:
                logger.debug("safe_edit_text: %s", e)
                return False
            raise
    return False


class TelegramToastSink:
    """
    Тост в чате курьера: сообщение отправляется при показе
    и удаляется, когда тост скрывается.
    """

    ICONS = {FeedbackKind.SUCCESS: "✅", FeedbackKind.ERROR: "⚠️"}

    def __init__(self, bot: Bot, chat_id: int):
        self.bot = bot
        self.chat_id = chat_id
        self._messages: Dict[int, int] = {}

    async def show(self, toast: Toast) -> None:
        message = await self.bot.send_message(
            chat_id=self.chat_id,
            text=f"{self.ICONS[toast.kind]} {toast.message}",
            disable_notification=True,
        )
        self._messages[toast.id] = message.message_id

    async def dismiss(self, toast: Toast) -> None:
        message_id = self._messages.pop(toast.id, None)
        if message_id is None:
            return
        try:
            await self.bot.delete_message(chat_id=self.chat_id, message_id=message_id)
        except TelegramBadRequest as e:
            # Пользователь мог удалить сообщение сам
            logger.debug("Toast message %s already gone: %s", message_id, e)
