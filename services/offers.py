"""
Входящий оффер доставки и решение курьера (принять / отклонить).

Состояния: IDLE -> OFFERED -> IDLE. Одновременно может ждать решения только
один оффер; второй, пришедший во время OFFERED, отклоняется
(PRECONDITION_VIOLATED), текущий остаётся.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from services.deliveries import Delivery, DeliveryRegistry
from services.errors import ErrorKind, InvalidPayload

logger = logging.getLogger(__name__)

# Поля, которых нет в оффере, но которые нужны доставке
PLACEHOLDER_PHONE = "N/A"


class NegotiatorState(str, enum.Enum):
    IDLE = "idle"
    OFFERED = "offered"


class OutcomeKind(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class DeliveryOffer:
    id: str
    order_id: str
    customer_name: str
    pickup_location: str
    dropoff_location: str
    estimated_distance: str = ""
    delivery_window: str = ""
    estimated_earnings: Optional[Decimal] = None
    special_instructions: Optional[str] = None
    batch_id: Optional[str] = None

    def to_delivery(self) -> Delivery:
        return Delivery(
            id=self.id,
            order_id=self.order_id,
            customer_name=self.customer_name,
            customer_phone=PLACEHOLDER_PHONE,
            pickup_location=self.pickup_location,
            dropoff_location=self.dropoff_location,
            delivery_window=self.delivery_window,
            distance=self.estimated_distance,
            eta=self.delivery_window,
            special_instructions=self.special_instructions,
            batch_id=self.batch_id,
        )


@dataclass(frozen=True, slots=True)
class OfferOutcome:
    kind: OutcomeKind
    order_id: str
    delivery_id: str


class OfferPayload(BaseModel):
    """Формат оффера, который присылает бэкенд (camelCase)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1, alias="orderId")
    customer_name: str = Field(default="", alias="customerName")
    pickup_location: str = Field(default="", alias="pickupLocation")
    dropoff_location: str = Field(default="", alias="dropoffLocation")
    estimated_distance: str = Field(default="", alias="estimatedDistance")
    delivery_window: str = Field(default="", alias="deliveryWindow")
    estimated_earnings: Optional[Decimal] = Field(default=None, alias="estimatedEarnings")
    special_instructions: Optional[str] = Field(default=None, alias="specialInstructions")
    batch_id: Optional[str] = Field(default=None, alias="batchId")

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """Бэкенд иногда присылает числовые id."""
        if isinstance(v, int):
            return str(v)
        return v

    def to_offer(self) -> DeliveryOffer:
        return DeliveryOffer(**self.model_dump())


def parse_offer(payload: Mapping[str, Any]) -> DeliveryOffer:
    """Разобрать payload оффера; при ошибке — InvalidPayload."""
    try:
        return OfferPayload.model_validate(payload).to_offer()
    except ValidationError as e:
        raise InvalidPayload(f"Invalid delivery offer payload: {e}") from e


OutcomeListener = Callable[[OfferOutcome], None]


class OfferNegotiator:
    """Текущий оффер и решение курьера по нему."""

    def __init__(self, registry: DeliveryRegistry):
        self._registry = registry
        self._pending: Optional[DeliveryOffer] = None
        self._listeners: List[OutcomeListener] = []

    @property
    def state(self) -> NegotiatorState:
        return NegotiatorState.OFFERED if self._pending is not None else NegotiatorState.IDLE

    @property
    def pending(self) -> Optional[DeliveryOffer]:
        return self._pending

    def subscribe(self, listener: OutcomeListener) -> Callable[[], None]:
        """Подписаться на исходы; возвращает функцию отписки."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def present(self, offer: DeliveryOffer) -> Optional[ErrorKind]:
        if self._pending is not None:
            logger.warning(
                "Offer %s dropped: offer %s is still waiting for a decision",
                offer.id, self._pending.id,
            )
            return ErrorKind.PRECONDITION_VIOLATED
        self._pending = offer
        logger.info("Offer presented: id=%s order=%s", offer.id, offer.order_id)
        return None

    def accept(self) -> Optional[OfferOutcome]:
        """
        Принять текущий оффер: создать доставку в реестре и вернуться в IDLE.
        Без оффера — no-op (None, событие не рассылается).
        """
        offer = self._pending
        if offer is None:
            return None
        self._pending = None
        if not self._registry.add(offer.to_delivery()):
            logger.warning("Accepted offer %s was already in the registry", offer.id)
        outcome = OfferOutcome(OutcomeKind.ACCEPTED, offer.order_id, offer.id)
        logger.info("Offer accepted: id=%s order=%s", offer.id, offer.order_id)
        self._emit(outcome)
        return outcome

    def reject(self) -> Optional[OfferOutcome]:
        offer = self._pending
        if offer is None:
            return None
        self._pending = None
        outcome = OfferOutcome(OutcomeKind.REJECTED, offer.order_id, offer.id)
        logger.info("Offer rejected: id=%s order=%s", offer.id, offer.order_id)
        self._emit(outcome)
        return outcome

    def _emit(self, outcome: OfferOutcome) -> None:
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error("Offer outcome listener failed: %s", e, exc_info=True)
