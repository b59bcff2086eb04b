import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, DateTime, Enum as PgEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from database.core import Base
from config import config


# В SQLite автоинкремент корректно работает только для PRIMARY KEY типа INTEGER (rowid).
# Поэтому в dev/test режиме на SQLite используем Integer для PK, а в Postgres оставляем BigInteger.
PK_INT = Integer if config.DB_DIALECT in ("sqlite", "sqlite3") else BigInteger

# --- Enums ---
class Availability(str, enum.Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"

# --- Models ---

class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    availability: Mapped[Availability] = mapped_column(
        PgEnum(Availability, name="availability_enum"), default=Availability.OFFLINE, nullable=False
    )
    availability_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        {"comment": "Курьеры и их сохранённая доступность"},
    )
