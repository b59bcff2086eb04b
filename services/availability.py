"""
Доступность курьера (онлайн / офлайн).
"""
import logging
from typing import Callable, List

from database.models import Availability

logger = logging.getLogger(__name__)

AvailabilityListener = Callable[[Availability], None]


class DriverAvailabilityState:
    """Флаг доступности курьера в рамках сессии."""

    def __init__(self, initial: Availability = Availability.OFFLINE):
        self._value = Availability(initial)
        self._listeners: List[AvailabilityListener] = []

    @property
    def value(self) -> Availability:
        return self._value

    @property
    def is_online(self) -> bool:
        return self._value == Availability.ONLINE

    def subscribe(self, listener: AvailabilityListener) -> None:
        self._listeners.append(listener)

    def toggle(self, online: bool) -> Availability:
        """
        Установить флаг в переданное значение (это не переключение:
        целевое состояние задаёт вызывающий, по новому значению свитча).
        """
        new_value = Availability.ONLINE if online else Availability.OFFLINE
        if new_value == self._value:
            return self._value
        self._value = new_value
        logger.info("Driver availability -> %s", new_value.value)
        for listener in list(self._listeners):
            try:
                listener(new_value)
            except Exception as e:
                logger.error("Availability listener failed: %s", e, exc_info=True)
        return new_value

    def restore(self, value: Availability) -> None:
        """Восстановить сохранённое значение при открытии сессии (без уведомления подписчиков)."""
        self._value = Availability(value)
