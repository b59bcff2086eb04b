import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from aiogram import Bot, Dispatcher
from aiogram.types import ErrorEvent
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramServerError, TelegramRetryAfter
from config import config
from middlewares.logging_middleware import LoggingMiddleware
from middlewares.session_middleware import DriverSessionMiddleware

# Configure logging with rotating file handler
log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format=log_format,
    handlers=[
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(
            'bot.log',
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
    ]
)

logger = logging.getLogger(__name__)

POLL_RESTART_SECONDS = 5.0


def setup_asyncio_exception_logging() -> None:
    """
    Ловит исключения из "фоновых" задач asyncio (таймеры тостов и т.п.),
    которые не проходят через aiogram handlers/errors.
    """
    loop = asyncio.get_running_loop()

    def _handler(loop: asyncio.AbstractEventLoop, context: dict):
        msg = context.get("message", "asyncio exception")
        exc = context.get("exception")
        logger.error("ASYNCIO %s", msg, exc_info=exc)

    loop.set_exception_handler(_handler)


def build_session_manager(bot: Bot):
    """Менеджер сессий курьеров: HTTP-клиент уведомлений + тосты в чат + БД."""
    from database.core import session_maker
    from services.driver_session import SessionManager
    from services.notification_api import NotificationClient
    from services.telegram_utils import TelegramToastSink

    return SessionManager(
        service_factory=NotificationClient,
        sink_factory=lambda telegram_id: TelegramToastSink(bot, telegram_id),
        session_factory=session_maker,
    )


def build_dispatcher(sessions) -> Dispatcher:
    from handlers import start, courier, fallback

    dp = Dispatcher()

    # Сессия курьера должна быть в data до логирования
    dp.message.middleware(DriverSessionMiddleware(sessions))
    dp.callback_query.middleware(DriverSessionMiddleware(sessions))
    dp.message.middleware(LoggingMiddleware(log_success=True))
    dp.callback_query.middleware(LoggingMiddleware(log_success=True))

    # Глобальный обработчик ошибок aiogram (ловит необработанные исключения в хендлерах)
    @dp.errors()
    async def global_error_handler(event: ErrorEvent):
        exc = event.exception
        trace = f"update_id={getattr(event.update, 'update_id', None)}"
        logger.error(
            "UNHANDLED %s err=%s",
            trace,
            repr(exc),
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        # Пытаемся мягко сообщить пользователю, не раскрывая деталей
        try:
            if event.update and event.update.message:
                await event.update.message.answer("⚠️ Something went wrong. Please try again.")
            elif event.update and event.update.callback_query:
                await event.update.callback_query.answer("⚠️ Error. Please try again.", show_alert=True)
        except (TelegramBadRequest, TelegramNetworkError) as e:
            logger.warning("Failed to report error to user: %s", e)

    # fallback — последним, ловит необработанные обновления
    dp.include_router(start.router)
    dp.include_router(courier.router)
    dp.include_router(fallback.router)
    return dp


async def main():
    logger.info("Starting courier bot...")
    setup_asyncio_exception_logging()
    logger.info("DB_DIALECT=%s DATABASE_URL=%s API_BASE_URL=%s", config.DB_DIALECT, config.DATABASE_URL, config.API_BASE_URL)

    # В режиме SQLite поднимаем таблицы автоматически (чтобы проект был "рабочим из коробки")
    if config.DB_DIALECT in ("sqlite", "sqlite3"):
        from database.core import create_tables
        logger.info("SQLite mode: ensuring tables exist (create_all)...")
        await create_tables()

    bot = Bot(token=config.BOT_TOKEN)
    sessions = build_session_manager(bot)
    dp = build_dispatcher(sessions)

    try:
        try:
            await bot.delete_webhook(drop_pending_updates=True)
        except (TelegramBadRequest, TelegramNetworkError) as webhook_error:
            logger.warning(f"Error deleting webhook (may not exist): {webhook_error}")

        logger.info("Bot started successfully")

        # Автоперезапуск polling при временных сетевых сбоях
        while True:
            try:
                await dp.start_polling(
                    bot,
                    allowed_updates=["message", "callback_query"],
                    drop_pending_updates=True
                )
                break  # нормальная остановка polling
            except TelegramRetryAfter as e:
                # Telegram просит подождать (rate limit)
                wait_s = float(getattr(e, "retry_after", POLL_RESTART_SECONDS))
                logger.warning("TelegramRetryAfter: wait %.1fs then continue", wait_s, exc_info=True)
                await asyncio.sleep(wait_s)
            except (TelegramNetworkError, TelegramServerError, asyncio.TimeoutError, OSError):
                logger.error("Polling crashed (network/server). Restart in %.1fs", POLL_RESTART_SECONDS, exc_info=True)
                await asyncio.sleep(POLL_RESTART_SECONDS)
    finally:
        # Закрываем сессии курьеров (таймеры тостов, HTTP-клиенты)
        await sessions.close_all()
        await bot.session.close()
        from database.core import engine
        await engine.dispose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
