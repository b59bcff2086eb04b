import logging
from aiogram import Router, types
from aiogram.filters import Command, CommandStart

from handlers.courier import menu_text
from keyboards.courier_kbs import get_courier_menu_kb
from services.driver_session import SessionManager

logger = logging.getLogger(__name__)
router = Router()


@router.message(CommandStart())
async def cmd_start(message: types.Message, sessions: SessionManager):
    """Вход курьера: открываем сессию, восстанавливаем доступность, грузим уведомления."""
    telegram_id = message.from_user.id
    driver_session = await sessions.login(telegram_id, message.from_user.full_name)

    # Ошибку загрузки уведомлений сессия показывает тостом — вход она не блокирует
    await driver_session.refresh_notifications()

    await message.answer(
        f"Welcome, {message.from_user.full_name}!\n\n" + menu_text(driver_session),
        reply_markup=get_courier_menu_kb(
            driver_session.availability.is_online, driver_session.notifications.unread_count()
        ),
        parse_mode="Markdown",
    )


@router.message(Command("logout"))
async def cmd_logout(message: types.Message, sessions: SessionManager):
    if await sessions.logout(message.from_user.id):
        logger.info("Driver %s logged out", message.from_user.id)
        await message.answer("You have been logged out. Send /start to log in again.")
    else:
        await message.answer("You are not logged in. Send /start to begin.")
