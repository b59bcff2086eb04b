"""
Middleware для логирования входящих событий и исключений.

Для каждого апдейта пишем IN/OUT (или ERR с traceback) с trace id,
курьером и тем, есть ли у него открытая сессия.
"""

import logging
import time
from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery


logger = logging.getLogger(__name__)


def _truncate(text: Optional[str], limit: int = 200) -> Optional[str]:
    if text is None:
        return None
    text = text.replace("\n", "\\n")
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _describe(event: TelegramObject) -> tuple[Optional[int], Optional[str]]:
    """(id курьера, полезная нагрузка) для лога."""
    if isinstance(event, Message):
        return (event.from_user.id if event.from_user else None), _truncate(event.text or event.caption)
    if isinstance(event, CallbackQuery):
        return (event.from_user.id if event.from_user else None), _truncate(event.data)
    return None, None


class LoggingMiddleware(BaseMiddleware):
    """Логирует старт/финиш обработки события + исключения с контекстом."""

    def __init__(self, log_success: bool = True):
        self.log_success = log_success

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        started = time.monotonic()
        event_type = type(event).__name__
        driver_id, payload = _describe(event)
        has_session = data.get("driver_session") is not None

        # Корреляционный ID на время обработки одного события
        trace_id = f"{int(time.time() * 1000)}:{driver_id or 'na'}"
        data["trace_id"] = trace_id

        logger.info(
            "IN  trace=%s type=%s driver=%s session=%s payload=%s",
            trace_id, event_type, driver_id, has_session, payload,
        )
        try:
            result = await handler(event, data)
        except Exception as e:
            logger.error(
                "ERR trace=%s type=%s driver=%s time_ms=%.1f err=%s",
                trace_id, event_type, driver_id, (time.monotonic() - started) * 1000, repr(e),
                exc_info=True,
            )
            raise
        if self.log_success:
            logger.info(
                "OUT trace=%s type=%s driver=%s time_ms=%.1f",
                trace_id, event_type, driver_id, (time.monotonic() - started) * 1000,
            )
        return result
