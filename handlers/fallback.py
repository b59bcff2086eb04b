"""
Обработчик необработанных обновлений.
Подключается последним — ловит сообщения и callback, которые не попали в другие хендлеры.
"""
import logging
from aiogram import Router, types
from aiogram.exceptions import TelegramBadRequest

logger = logging.getLogger(__name__)
router = Router()


@router.message()
async def fallback_message(message: types.Message):
    """Любое сообщение, не обработанное другими хендлерами."""
    await message.answer("Use /start to log in or /courier to open the courier panel.")


@router.callback_query()
async def fallback_callback(callback: types.CallbackQuery):
    """Устаревшие кнопки и т.п."""
    logger.debug("Unhandled callback data=%s", callback.data)
    try:
        await callback.answer("This button is outdated. Send /courier to refresh the menu.")
    except TelegramBadRequest as e:
        # query is too old — ответить уже нельзя
        logger.debug("Fallback callback answer failed: %s", e)
