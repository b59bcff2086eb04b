"""Shared fixtures: test environment, fake notification service, in-memory database."""
import os

# config.py читает окружение при импорте и завершает процесс без BOT_TOKEN
os.environ["BOT_TOKEN"] = "123456:test-token"
os.environ["DB_DIALECT"] = "sqlite"
os.environ["API_BASE_URL"] = "http://localhost:3000/api"
os.environ["API_TOKEN"] = "driver-token"
os.environ["API_RETRY_ATTEMPTS"] = "3"
os.environ["API_RETRY_DELAY"] = "0"
os.environ["OFFERS_REQUIRE_ONLINE"] = "true"

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.core import Base
import database.models  # noqa: F401
from services.deliveries import Delivery
from services.errors import RemoteServiceError
from services.notification_store import Notification, NotificationType


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_notification(notification_id: str, minutes_ago: int = 0, read: bool = False, **kwargs) -> Notification:
    return Notification(
        id=notification_id,
        type=kwargs.pop("type", NotificationType.ORDER_READY),
        title=kwargs.pop("title", f"Notification {notification_id}"),
        body=kwargs.pop("body", ""),
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
        read=read,
        **kwargs,
    )


def make_delivery(delivery_id: str, **kwargs) -> Delivery:
    fields = dict(
        id=delivery_id,
        order_id=f"ORD-{delivery_id}",
        customer_name="Jane Doe",
        customer_phone="+10000000000",
        pickup_location="Warehouse A",
        dropoff_location="12 Main St",
        delivery_window="10:00-12:00",
    )
    fields.update(kwargs)
    return Delivery(**fields)


class FakeNotificationService:
    """In-memory NotificationService with call counters and switchable failures."""

    def __init__(self, items: Optional[List[Notification]] = None):
        self.items: List[Notification] = list(items or [])
        self.fetch_calls = 0
        self.mark_read_calls: List[str] = []
        self.mark_all_calls = 0
        self.fail_fetch = False
        self.fail_mark_read = False
        self.fail_mark_all = False
        self.closed = False
        # Если задано — fetch ждёт это событие (для проверки гонок load())
        self.fetch_gate: Optional[asyncio.Event] = None
        # Если задано — mark_read / mark_all_read ждут это событие (запрос "в полёте")
        self.remote_gate: Optional[asyncio.Event] = None

    async def fetch_notifications(self, limit: int, offset: int) -> List[Notification]:
        self.fetch_calls += 1
        snapshot = list(self.items)
        if self.fetch_gate is not None:
            gate, self.fetch_gate = self.fetch_gate, None
            await gate.wait()
        if self.fail_fetch:
            raise RemoteServiceError("Network error", status=None)
        return snapshot[offset:offset + limit]

    async def mark_read(self, notification_id: str) -> None:
        self.mark_read_calls.append(notification_id)
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        if self.fail_mark_read:
            raise RemoteServiceError("Internal error", status=500)

    async def mark_all_read(self) -> int:
        self.mark_all_calls += 1
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        if self.fail_mark_all:
            raise RemoteServiceError("Internal error", status=500)
        return sum(1 for item in self.items if not item.read)

    async def close(self) -> None:
        self.closed = True


class RecordingSink:
    """FeedbackSink, который запоминает показанные и скрытые тосты."""

    def __init__(self):
        self.shown = []
        self.dismissed = []

    async def show(self, toast) -> None:
        self.shown.append(toast)

    async def dismiss(self, toast) -> None:
        self.dismissed.append(toast)


@pytest.fixture
def service():
    return FakeNotificationService()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def db_session_factory():
    """Отдельный in-memory SQLite на тест (StaticPool: одно соединение на все сессии)."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()
