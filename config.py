"""
Конфигурация бота курьера с валидацией через Pydantic.

Значения берутся из окружения и .env; при ошибке валидации бот не стартует.
"""
from typing import Optional
from pathlib import Path
from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

SQLITE_DIALECTS = ("sqlite", "sqlite3")


class Config(BaseSettings):
    """Настройки бота, API уведомлений и ядра доставок."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Telegram
    BOT_TOKEN: str = Field(default="", description="Токен Telegram бота")

    @field_validator("BOT_TOKEN")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        if not v:
            raise ValueError("BOT_TOKEN обязателен для работы бота")
        return v

    # База: в ней только курьеры и их доступность онлайн/офлайн
    DB_DIALECT: str = Field(default="sqlite", description="postgres или sqlite")
    SQLITE_PATH: str = Field(default="courier_bot.sqlite3", description="Файл SQLite (относительно проекта)")
    DB_USER: str = Field(default="postgres")
    DB_PASS: str = Field(default="postgres")
    DB_HOST: str = Field(default="localhost")
    DB_PORT: str = Field(default="5432")
    DB_NAME: str = Field(default="courier_bot")
    DB_POOL_SIZE: int = Field(default=5, description="Пул соединений PostgreSQL")
    DB_MAX_OVERFLOW: int = Field(default=5, description="Соединений сверх пула")
    DATABASE_URL_OVERRIDE: Optional[str] = Field(
        default=None, description="Готовый URL БД", validation_alias="DATABASE_URL"
    )

    @field_validator("DB_DIALECT")
    @classmethod
    def validate_db_dialect(cls, v: str) -> str:
        v = v.lower()
        if v not in ("postgres", "postgresql") + SQLITE_DIALECTS:
            raise ValueError(f"Неподдерживаемый тип БД: {v}")
        return v

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        """Async URL для SQLAlchemy; явный DATABASE_URL важнее DB_* полей."""
        if self.DATABASE_URL_OVERRIDE:
            url = self.DATABASE_URL_OVERRIDE.strip()
            # Хостинги отдают postgresql://, драйвер asyncpg надо указать явно
            if url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]
            return url
        if self.DB_DIALECT in SQLITE_DIALECTS:
            db_path = Path(self.SQLITE_PATH)
            if not db_path.is_absolute():
                db_path = Path(__file__).resolve().parent / db_path
            return f"sqlite+aiosqlite:///{db_path.resolve().as_posix()}"
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # API уведомлений
    API_BASE_URL: str = Field(default="http://localhost:3000/api", description="Базовый URL API бэкенда")
    API_TOKEN: str = Field(default="", description="Bearer токен водителя")
    API_TIMEOUT: float = Field(default=30.0, gt=0, description="Таймаут запроса, сек")
    API_RETRY_ATTEMPTS: int = Field(default=3, ge=1, description="Попыток при сетевой ошибке / 5xx")
    API_RETRY_DELAY: float = Field(default=1.0, ge=0, description="Шаг задержки между попытками, сек")

    @field_validator("API_BASE_URL")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"API_BASE_URL должен начинаться с http:// или https://: {v}")
        return v.rstrip("/")

    # Ядро доставок
    NOTIFICATIONS_PAGE_SIZE: int = Field(default=50, gt=0, le=200, description="Уведомлений за одну загрузку")
    TOAST_DWELL_SECONDS: float = Field(default=2.5, gt=0, description="Время показа тоста, сек")
    OFFERS_REQUIRE_ONLINE: bool = Field(default=True, description="Офферы только курьеру онлайн")
    DELIVERIES_PER_PAGE: int = Field(default=10, gt=0, description="Доставок на странице списка")

    # Логи
    LOG_LEVEL: str = Field(default="INFO")
    DEBUG: bool = Field(default=False, description="echo SQL-запросов")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Неподдерживаемый уровень логирования: {v}")
        return v


try:
    config = Config()
except Exception as e:
    import sys
    print(f"❌ Ошибка загрузки конфигурации: {e}", file=sys.stderr)
    sys.exit(1)
