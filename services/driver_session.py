"""
Сессия курьера: владеет реестром доставок, оффером, доступностью,
уведомлениями и тостами.

Создаётся при входе (/start) и закрывается при выходе (/logout) —
никакого глобального изменяемого состояния, всё привязано к сессии.
Хендлеры вызывают методы сессии и сами состояние не меняют.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from config import config
from database.models import Availability
from services.availability import DriverAvailabilityState
from services.db_ops import get_or_create_driver, save_availability
from services.deliveries import DeliveryRegistry, DeliveryStatus, TransitionResult
from services.errors import ErrorKind, FetchFailed, MarkFailed
from services.feedback import FeedbackKind, FeedbackSink, TransientFeedback
from services.notification_store import NotificationService, NotificationStore
from services.offers import DeliveryOffer, OfferNegotiator, OfferOutcome, parse_offer

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    DeliveryStatus.PENDING: "pending",
    DeliveryStatus.PICKED_UP: "picked up",
    DeliveryStatus.IN_PROGRESS: "in progress",
    DeliveryStatus.DELIVERED: "delivered",
    DeliveryStatus.FAILED: "failed",
    DeliveryStatus.CANCELLED: "cancelled",
}


class DriverSession:
    """Всё состояние одного вошедшего курьера."""

    def __init__(
        self,
        telegram_id: int,
        service: NotificationService,
        full_name: str = "",
        feedback_sink: Optional[FeedbackSink] = None,
        session_factory=None,
        dwell_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        offers_require_online: Optional[bool] = None,
    ):
        self.telegram_id = telegram_id
        self.full_name = full_name
        self.registry = DeliveryRegistry()
        self.offers = OfferNegotiator(self.registry)
        self.availability = DriverAvailabilityState()
        self.notifications = NotificationStore(
            service, page_size=page_size if page_size is not None else config.NOTIFICATIONS_PAGE_SIZE
        )
        self.feedback = TransientFeedback(
            feedback_sink,
            dwell_seconds=dwell_seconds if dwell_seconds is not None else config.TOAST_DWELL_SECONDS,
        )
        self._service = service
        self._session_factory = session_factory
        self._offers_require_online = (
            offers_require_online if offers_require_online is not None else config.OFFERS_REQUIRE_ONLINE
        )
        self.closed = False

    # --- Жизненный цикл ---

    async def open(self) -> None:
        """Восстановить сохранённую доступность курьера."""
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                driver = await get_or_create_driver(session, self.telegram_id, self.full_name)
                self.availability.restore(driver.availability)
            logger.info("Session opened: driver=%s availability=%s", self.telegram_id, self.availability.value.value)
        except SQLAlchemyError as e:
            logger.error("Failed to restore availability for driver %s: %s", self.telegram_id, e, exc_info=True)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.feedback.close()
        close = getattr(self._service, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.warning("Failed to close notification service for driver %s: %s", self.telegram_id, e)
        logger.info("Session closed: driver=%s", self.telegram_id)

    # --- Доступность ---

    async def set_availability(self, online: bool) -> Availability:
        """Переключатель онлайн/офлайн. Ошибка сохранения в БД не отменяет переключение."""
        value = self.availability.toggle(online)
        if self._session_factory is not None:
            try:
                async with self._session_factory() as session:
                    await save_availability(session, self.telegram_id, value)
            except SQLAlchemyError as e:
                logger.error("Failed to persist availability for driver %s: %s", self.telegram_id, e, exc_info=True)
        await self.feedback.show("You are now online" if value == Availability.ONLINE else "You are now offline")
        return value

    # --- Офферы ---

    def ingest_offer(
        self, payload: Union[DeliveryOffer, Mapping[str, Any]]
    ) -> tuple[Optional[DeliveryOffer], Optional[ErrorKind]]:
        """
        Единая точка входа для новых офферов от внешнего источника.

        Returns:
            (offer, error): offer=None без ошибки — курьер офлайн, оффер не показан
        """
        offer = payload if isinstance(payload, DeliveryOffer) else parse_offer(payload)
        if self._offers_require_online and not self.availability.is_online:
            logger.info("Offer %s ignored: driver %s is offline", offer.id, self.telegram_id)
            return None, None
        error = self.offers.present(offer)
        if error is not None:
            return None, error
        return offer, None

    async def accept_offer(self) -> Optional[OfferOutcome]:
        outcome = self.offers.accept()
        if outcome is not None:
            await self.feedback.show(f"Delivery accepted! Order {outcome.order_id} added to your list")
        return outcome

    async def reject_offer(self) -> Optional[OfferOutcome]:
        outcome = self.offers.reject()
        if outcome is not None:
            await self.feedback.show(f"Delivery rejected: Order {outcome.order_id}", FeedbackKind.ERROR)
        return outcome

    # --- Доставки ---

    async def update_delivery_status(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """Смена статуса доставки; для FAILED курьер указывает причину (и, возможно, комментарий)."""
        result = self.registry.transition(delivery_id, status, reason=reason, notes=notes)
        if result.changed:
            message = f"Order {result.delivery.order_id} marked as {STATUS_LABELS[result.delivery.status]}"
            if result.delivery.failure_reason:
                message += f": {result.delivery.failure_reason}"
            await self.feedback.show(message)
        elif result.error == ErrorKind.INVALID_TRANSITION:
            await self.feedback.show(
                f"Order {result.delivery.order_id} is already {STATUS_LABELS[result.delivery.status]}",
                FeedbackKind.ERROR,
            )
        return result

    # --- Уведомления ---

    async def refresh_notifications(self) -> bool:
        try:
            await self.notifications.load()
        except FetchFailed:
            await self.feedback.show("Failed to load notifications. Please try again.", FeedbackKind.ERROR)
            return False
        return True

    async def open_notification(self, notification_id: str) -> Optional[ErrorKind]:
        return await self.notifications.mark_read(notification_id)

    async def mark_all_notifications_read(self) -> bool:
        try:
            await self.notifications.mark_all_read()
        except MarkFailed:
            await self.feedback.show(
                "Failed to mark all notifications as read. Please try again.", FeedbackKind.ERROR
            )
            return False
        return True


class SessionManager:
    """Сессии вошедших курьеров по telegram_id."""

    def __init__(
        self,
        service_factory: Callable[[], NotificationService],
        sink_factory: Optional[Callable[[int], FeedbackSink]] = None,
        session_factory=None,
    ):
        self._service_factory = service_factory
        self._sink_factory = sink_factory
        self._session_factory = session_factory
        self._sessions: Dict[int, DriverSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, telegram_id: int) -> Optional[DriverSession]:
        return self._sessions.get(telegram_id)

    async def login(self, telegram_id: int, full_name: str = "") -> DriverSession:
        """Открыть сессию; повторный вход возвращает уже открытую."""
        existing = self._sessions.get(telegram_id)
        if existing is not None:
            return existing
        session = DriverSession(
            telegram_id,
            self._service_factory(),
            full_name=full_name,
            feedback_sink=self._sink_factory(telegram_id) if self._sink_factory else None,
            session_factory=self._session_factory,
        )
        self._sessions[telegram_id] = session
        await session.open()
        return session

    async def logout(self, telegram_id: int) -> bool:
        session = self._sessions.pop(telegram_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        for telegram_id in list(self._sessions):
            await self.logout(telegram_id)
