import asyncio
import logging

from database.core import engine, create_tables

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def init_db():
    # Схема маленькая (одна таблица drivers), миграций нет — только create_all
    logger.info("Creating tables...")
    await create_tables()
    logger.info("Tables created successfully.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_db())
