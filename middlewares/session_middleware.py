"""
Middleware для внедрения сессии курьера в хендлеры.
"""
import logging
from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery

from services.driver_session import SessionManager

logger = logging.getLogger(__name__)


class DriverSessionMiddleware(BaseMiddleware):
    """
    Кладёт в data:
    - sessions: менеджер сессий (для /start и /logout)
    - driver_session: сессия текущего курьера или None, если он не вошёл
    """

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        user_id = None
        if isinstance(event, (Message, CallbackQuery)) and event.from_user:
            user_id = event.from_user.id

        data["sessions"] = self.sessions
        data["driver_session"] = self.sessions.get(user_id) if user_id is not None else None
        return await handler(event, data)
