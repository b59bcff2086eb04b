"""
Входящие уведомления курьера и синхронизация отметок о прочтении с сервером.

Отметка о прочтении ставится локально сразу (оптимистично), затем уходит на
сервер. Одиночная и массовая отметки ведут себя по-разному и намеренно
реализованы двумя отдельными путями:

- mark_read: ошибка сервера только логируется, локальная отметка остаётся;
- mark_all_read: при ошибке сервера делаем откат — перечитываем список
  через load() и пробрасываем MarkFailed наверх.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.errors import ErrorKind, FetchFailed, MarkFailed

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    BATCH_ASSIGNED = "BATCH_ASSIGNED"
    BATCH_UPDATED = "BATCH_UPDATED"
    BATCH_CANCELLED = "BATCH_CANCELLED"
    ORDER_READY = "ORDER_READY_FOR_PICKUP"
    ORDER_PICKED_UP = "ORDER_PICKED_UP"
    ORDER_OUT_FOR_DELIVERY = "ORDER_OUT_FOR_DELIVERY"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_FAILED = "ORDER_FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> NotificationType:
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class Notification:
    id: str
    type: NotificationType
    title: str
    body: str
    created_at: datetime
    read: bool = False
    batch_id: Optional[str] = None
    order_id: Optional[str] = None


class NotificationData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    batchId: Optional[str] = None
    orderId: Optional[str] = None

    @field_validator("batchId", "orderId", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v


class NotificationPayload(BaseModel):
    """Уведомление в формате API: {"_id", "type", "title", "body", "createdAt", "isRead", "data"}."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., alias="_id")
    type: NotificationType = NotificationType.UNKNOWN
    title: str = ""
    body: str = ""
    created_at: datetime = Field(..., alias="createdAt")
    is_read: bool = Field(default=False, alias="isRead")
    data: Optional[NotificationData] = None

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> NotificationType:
        return NotificationType.parse(v)

    @field_validator("created_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_notification(self) -> Notification:
        return Notification(
            id=self.id,
            type=self.type,
            title=self.title,
            body=self.body,
            created_at=self.created_at,
            read=self.is_read,
            batch_id=self.data.batchId if self.data else None,
            order_id=self.data.orderId if self.data else None,
        )


class NotificationService(Protocol):
    """Удалённый сервис уведомлений (все вызовы могут упасть)."""

    async def fetch_notifications(self, limit: int, offset: int) -> List[Notification]: ...

    async def mark_read(self, notification_id: str) -> None: ...

    async def mark_all_read(self) -> int: ...


class NotificationStore:
    """Локальная копия ленты уведомлений с оптимистичными отметками о прочтении."""

    def __init__(self, service: NotificationService, page_size: int = 50):
        self._service = service
        self._page_size = page_size
        self._items: List[Notification] = []
        # id, прочитанные локально в этой сессии: load() не возвращает их в непрочитанные
        self._read_locally: Set[str] = set()
        self._load_generation = 0

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return tuple(self._items)

    def get(self, notification_id: str) -> Optional[Notification]:
        for item in self._items:
            if item.id == notification_id:
                return item
        return None

    def unread_count(self) -> int:
        return sum(1 for item in self._items if not item.read)

    async def load(self) -> tuple[Notification, ...]:
        """
        Заменить локальный список результатом запроса к серверу (новые сверху).

        При ошибке — FetchFailed, прежний список не трогаем. Если параллельно
        стартовал более новый load(), результат этого молча отбрасывается.
        """
        self._load_generation += 1
        generation = self._load_generation
        try:
            fetched = await self._service.fetch_notifications(self._page_size, 0)
        except Exception as e:
            if generation != self._load_generation:
                # Более новый load() уже идёт или завершился: эта ошибка устарела
                logger.info("Stale notifications load failed, ignored (generation=%s): %s", generation, e)
                return self.notifications
            logger.error("Failed to load notifications: %s", e)
            raise FetchFailed(f"Failed to load notifications: {e}") from e

        if generation != self._load_generation:
            logger.info("Stale notifications load discarded (generation=%s)", generation)
            return self.notifications

        self._items = self._merge(fetched)
        logger.info("Notifications loaded: total=%s unread=%s", len(self._items), self.unread_count())
        return self.notifications

    async def mark_read(self, notification_id: str) -> Optional[ErrorKind]:
        """
        Отметить уведомление прочитанным.

        Локально — сразу; на сервер уходит только если уведомление ещё не было
        прочитано (повторные нажатия не порождают запросов). Ошибка сервера
        не откатывает отметку и не пробрасывается.
        """
        index = self._index_of(notification_id)
        if index is None:
            return ErrorKind.NOT_FOUND
        if self._items[index].read:
            return None

        self._items[index] = replace(self._items[index], read=True)
        self._read_locally.add(notification_id)
        try:
            await self._service.mark_read(notification_id)
        except Exception as e:
            logger.warning("Failed to mark notification %s as read, keeping local state: %s", notification_id, e)
        return None

    async def mark_all_read(self) -> int:
        """
        Отметить прочитанными все уведомления.

        Сначала локально, затем один массовый запрос. При ошибке — откат:
        локальные отметки сбрасываются, список перечитывается через load()
        (ровно один раз), и наверх уходит один MarkFailed.

        Returns:
            Количество уведомлений, обновлённых на сервере
        """
        unread_ids = [item.id for item in self._items if not item.read]
        if not unread_ids:
            return 0

        self._items = [item if item.read else replace(item, read=True) for item in self._items]
        self._read_locally.update(unread_ids)
        try:
            updated = await self._service.mark_all_read()
        except Exception as e:
            logger.error("Failed to mark all notifications as read, resyncing: %s", e)
            self._read_locally.clear()
            try:
                await self.load()
            except FetchFailed as load_error:
                logger.error("Resync after failed mark-all-read also failed: %s", load_error)
            raise MarkFailed(f"Failed to mark all notifications as read: {e}") from e

        logger.info("All notifications marked as read: updated=%s", updated)
        return updated

    def _index_of(self, notification_id: str) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.id == notification_id:
                return index
        return None

    def _merge(self, fetched: Sequence[Notification]) -> List[Notification]:
        merged: Dict[str, Notification] = {}
        for item in fetched:
            if item.id in self._read_locally and not item.read:
                item = replace(item, read=True)
            merged[item.id] = item
        return sorted(merged.values(), key=lambda n: n.created_at, reverse=True)
