"""
Реестр доставок курьера — единственный источник правды о назначенных доставках
в рамках сессии.

Доставки хранятся как неизменяемые снимки (frozen dataclass): экраны получают
снимок и не могут его изменить, смена статуса заменяет снимок в реестре.
Порядок — порядок добавления (порядок, в котором курьер принимал заказы).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional, Union

from services.errors import ErrorKind

logger = logging.getLogger(__name__)


class DashboardStatus(str, enum.Enum):
    """Сокращённый набор статусов для списков на дашборде."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def dashboard_status(self) -> DashboardStatus:
        return _DASHBOARD_MAP[self]


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
    DeliveryStatus.CANCELLED,
})

# Прямой порядок жизненного цикла; FAILED/CANCELLED достижимы из любого нетерминального
FORWARD_ORDER = (
    DeliveryStatus.PENDING,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_PROGRESS,
    DeliveryStatus.DELIVERED,
)

_DASHBOARD_MAP = {
    DeliveryStatus.PENDING: DashboardStatus.PENDING,
    DeliveryStatus.PICKED_UP: DashboardStatus.IN_PROGRESS,
    DeliveryStatus.IN_PROGRESS: DashboardStatus.IN_PROGRESS,
    DeliveryStatus.DELIVERED: DashboardStatus.COMPLETED,
    DeliveryStatus.FAILED: DashboardStatus.FAILED,
    DeliveryStatus.CANCELLED: DashboardStatus.CANCELLED,
}

# Причины неудачной доставки: id (для callback_data) -> текст, который уходит в запись
FAILURE_REASONS = {
    "customer_unavailable": "Customer not available",
    "wrong_address": "Wrong address",
    "customer_refused": "Customer refused delivery",
    "access_denied": "Access denied to location",
    "package_damaged": "Package damaged",
    "business_closed": "Business closed",
    "other": "Other",
}


@dataclass(frozen=True, slots=True)
class Delivery:
    """Снимок доставки."""
    id: str
    order_id: str
    customer_name: str
    customer_phone: str
    pickup_location: str
    dropoff_location: str
    delivery_window: str
    distance: str = ""
    eta: str = ""
    special_instructions: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    batch_id: Optional[str] = None
    stop_number: Optional[int] = None
    total_stops: Optional[int] = None
    started_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_notes: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def dashboard_status(self) -> DashboardStatus:
        return self.status.dashboard_status

    def next_statuses(self) -> List[DeliveryStatus]:
        """Статусы, в которые доставку можно перевести из текущего."""
        if self.is_terminal:
            return []
        current = FORWARD_ORDER.index(self.status)
        return list(FORWARD_ORDER[current + 1:]) + [DeliveryStatus.FAILED, DeliveryStatus.CANCELLED]


class TransitionResult(NamedTuple):
    delivery: Optional[Delivery]
    error: Optional[ErrorKind] = None
    changed: bool = False


@dataclass(frozen=True, slots=True)
class DeliverySummary:
    total: int
    delivered: int
    pending: int
    failed: int


def is_allowed_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    if current.is_terminal:
        return False
    if target in (DeliveryStatus.FAILED, DeliveryStatus.CANCELLED):
        return True
    return FORWARD_ORDER.index(target) > FORWARD_ORDER.index(current)


class DeliveryRegistry:
    """Доставки курьера по идентификатору, с переходами между статусами."""

    def __init__(self):
        # dict сохраняет порядок вставки
        self._deliveries: Dict[str, Delivery] = {}

    def __len__(self) -> int:
        return len(self._deliveries)

    def __contains__(self, delivery_id: object) -> bool:
        return delivery_id in self._deliveries

    def add(self, delivery: Delivery) -> bool:
        """
        Добавить доставку в статусе PENDING.

        Повторное добавление того же id ничего не меняет (дубликат оффера
        не должен создать вторую запись) — сохраняются поля первого вызова.

        Returns:
            True если доставка добавлена, False если id уже есть
        """
        if delivery.id in self._deliveries:
            logger.info("Delivery %s already registered, duplicate add ignored", delivery.id)
            return False
        self._deliveries[delivery.id] = replace(
            delivery, status=DeliveryStatus.PENDING, started_at=None, failure_reason=None, failure_notes=None
        )
        logger.info("Delivery registered: id=%s order=%s batch=%s", delivery.id, delivery.order_id, delivery.batch_id)
        return True

    def transition(
        self,
        delivery_id: str,
        next_status: DeliveryStatus,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Перевести доставку в новый статус.

        Повтор того же статуса — no-op без ошибки. Из терминального статуса и
        назад по жизненному циклу переходить нельзя: запись не меняется,
        возвращается INVALID_TRANSITION. Неизвестный id — NOT_FOUND, ничего
        не создаётся.

        reason/notes записываются только при переходе в FAILED.
        """
        next_status = DeliveryStatus(next_status)
        current = self._deliveries.get(delivery_id)
        if current is None:
            logger.warning("Transition to %s for unknown delivery %s", next_status.value, delivery_id)
            return TransitionResult(None, ErrorKind.NOT_FOUND)

        if current.status == next_status:
            return TransitionResult(current)

        if not is_allowed_transition(current.status, next_status):
            logger.warning(
                "Rejected transition for delivery %s: %s -> %s",
                delivery_id, current.status.value, next_status.value,
            )
            return TransitionResult(current, ErrorKind.INVALID_TRANSITION)

        started_at = current.started_at
        if next_status == DeliveryStatus.IN_PROGRESS:
            started_at = datetime.now(timezone.utc)
        updated = replace(current, status=next_status, started_at=started_at)
        if next_status == DeliveryStatus.FAILED:
            updated = replace(updated, failure_reason=reason, failure_notes=notes or None)
        self._deliveries[delivery_id] = updated
        logger.info("Delivery %s: %s -> %s", delivery_id, current.status.value, next_status.value)
        if updated.failure_reason:
            logger.info("Delivery %s failure reason: %s", delivery_id, updated.failure_reason)
        return TransitionResult(updated, changed=True)

    def get(self, delivery_id: str) -> Optional[Delivery]:
        return self._deliveries.get(delivery_id)

    def list(
        self,
        status: Optional[Union[DeliveryStatus, DashboardStatus]] = None,
        batch_id: Optional[str] = None,
    ) -> tuple[Delivery, ...]:
        """
        Доставки в порядке добавления.

        status может быть как полным DeliveryStatus, так и DashboardStatus —
        во втором случае фильтр идёт через отображение на дашборд.
        """
        items = self._deliveries.values()
        if isinstance(status, DashboardStatus):
            items = [d for d in items if d.dashboard_status == status]
        elif status is not None:
            items = [d for d in items if d.status == status]
        if batch_id is not None:
            items = [d for d in items if d.batch_id == batch_id]
        return tuple(items)

    def batches(self) -> Dict[str, tuple[Delivery, ...]]:
        """Доставки, сгруппированные по батчу; внутри батча — по номеру остановки."""
        grouped: Dict[str, List[Delivery]] = {}
        for delivery in self._deliveries.values():
            if delivery.batch_id is not None:
                grouped.setdefault(delivery.batch_id, []).append(delivery)
        # Без stop_number — в конец батча, между собой в порядке добавления (sorted стабилен)
        return {
            batch_id: tuple(sorted(items, key=lambda d: (d.stop_number is None, d.stop_number or 0)))
            for batch_id, items in grouped.items()
        }

    def summary(self) -> DeliverySummary:
        delivered = failed = pending = 0
        for delivery in self._deliveries.values():
            if delivery.status == DeliveryStatus.DELIVERED:
                delivered += 1
            elif delivery.status == DeliveryStatus.FAILED:
                failed += 1
            elif not delivery.is_terminal:
                pending += 1
        return DeliverySummary(total=len(self._deliveries), delivered=delivered, pending=pending, failed=failed)
