from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Driver, Availability

# --- Driver Services ---


async def get_driver_by_telegram_id(session: AsyncSession, telegram_id: int) -> Optional[Driver]:
    stmt = select(Driver).where(Driver.telegram_id == telegram_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_driver(session: AsyncSession, telegram_id: int, full_name: str) -> Driver:
    """
    Найти курьера по telegram_id или создать нового (офлайн по умолчанию).
    Имя обновляется, если в Telegram оно поменялось.
    """
    driver = await get_driver_by_telegram_id(session, telegram_id)
    if driver is None:
        driver = Driver(telegram_id=telegram_id, full_name=full_name, availability=Availability.OFFLINE)
        session.add(driver)
        await session.commit()
        await session.refresh(driver)
        return driver
    if full_name and driver.full_name != full_name:
        driver.full_name = full_name
        await session.commit()
    return driver


async def save_availability(session: AsyncSession, telegram_id: int, availability: Availability) -> bool:
    """Сохранить доступность курьера. False — курьер не найден."""
    stmt = (
        update(Driver)
        .where(Driver.telegram_id == telegram_id)
        .values(availability=availability, availability_changed_at=datetime.now(timezone.utc))
    )
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount > 0
