"""
Короткие всплывающие уведомления (тосты) об исходе действий курьера.

Одновременно виден только один тост: новый show() сразу заменяет текущий,
без очереди. Тост скрывается сам через фиксированное время (dwell),
закрывать его вручную не нужно.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

_toast_ids = itertools.count(1)


class FeedbackKind(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Toast:
    id: int
    message: str
    kind: FeedbackKind


class FeedbackSink(Protocol):
    """Отображение тостов (в боте — сообщение в чате, которое потом удаляется)."""

    async def show(self, toast: Toast) -> None: ...

    async def dismiss(self, toast: Toast) -> None: ...


class LoggingFeedbackSink:
    """Sink по умолчанию: только пишет в лог."""

    async def show(self, toast: Toast) -> None:
        logger.info("TOAST show id=%s kind=%s message=%s", toast.id, toast.kind.value, toast.message)

    async def dismiss(self, toast: Toast) -> None:
        logger.debug("TOAST dismiss id=%s", toast.id)


class ScopedTimer:
    """Таймер видимости со start/cancel поверх текущего event loop."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        """Запустить таймер; уже запущенный отменяется."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(delay, callback))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(delay)
        await callback()


class TransientFeedback:
    """Тосты с фиксированным временем показа."""

    def __init__(self, sink: Optional[FeedbackSink] = None, dwell_seconds: float = 2.5):
        if dwell_seconds <= 0:
            raise ValueError("dwell_seconds must be positive")
        self._sink = sink or LoggingFeedbackSink()
        self._dwell = dwell_seconds
        self._timer = ScopedTimer()
        self._current: Optional[Toast] = None

    @property
    def current(self) -> Optional[Toast]:
        return self._current

    @property
    def dwell_seconds(self) -> float:
        return self._dwell

    async def show(self, message: str, kind: FeedbackKind = FeedbackKind.SUCCESS) -> Toast:
        toast = Toast(id=next(_toast_ids), message=message, kind=FeedbackKind(kind))
        previous = self._current
        # Состояние меняется до любого await: тост виден сразу
        self._current = toast
        self._timer.cancel()

        if previous is not None:
            await self._call_sink("dismiss", previous)
        await self._call_sink("show", toast)

        # Пока ждали sink, мог прийти следующий show(): его dismiss для этого
        # тоста отработал раньше, чем тост появился, поэтому снимаем здесь
        if self._current is toast:
            self._timer.start(self._dwell, lambda: self._expire(toast))
        else:
            await self._call_sink("dismiss", toast)
        return toast

    async def close(self) -> None:
        """Снять текущий тост и остановить таймер (завершение сессии)."""
        self._timer.cancel()
        toast, self._current = self._current, None
        if toast is not None:
            await self._call_sink("dismiss", toast)

    async def _expire(self, toast: Toast) -> None:
        if self._current is not toast:
            return
        self._current = None
        await self._call_sink("dismiss", toast)

    async def _call_sink(self, method: str, toast: Toast) -> None:
        try:
            await getattr(self._sink, method)(toast)
        except Exception as e:
            logger.warning("Feedback sink %s failed for toast %s: %s", method, toast.id, e)
