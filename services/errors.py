"""
Ошибки ядра доставки и уведомлений.

NOT_FOUND, INVALID_TRANSITION и PRECONDITION_VIOLATED возвращаются как значения
(хендлеры сами решают, показывать ли их), FetchFailed и MarkFailed — исключения,
которые поднимаются до слоя отображения.
"""
import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    FETCH_FAILED = "fetch_failed"
    MARK_FAILED = "mark_failed"
    PRECONDITION_VIOLATED = "precondition_violated"


class CourierCoreError(Exception):
    """Базовая ошибка ядра."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class FetchFailed(CourierCoreError):
    """Не удалось загрузить уведомления с сервера."""

    kind = ErrorKind.FETCH_FAILED


class MarkFailed(CourierCoreError):
    """Сервер не подтвердил отметку о прочтении."""

    kind = ErrorKind.MARK_FAILED


class InvalidPayload(CourierCoreError):
    """Некорректные данные события (оффер, уведомление)."""


class RemoteServiceError(Exception):
    """Ошибка HTTP API бэкенда (сеть, не-2xx статус, не-JSON ответ)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status
