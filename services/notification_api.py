"""
HTTP-клиент API уведомлений курьера.

Эндпоинты (относительно API_BASE_URL):
    GET   /notifications?limit=50&offset=0   -> {"data": {"notifications": [...]}}
    PATCH /notifications/{id}/read           -> {"data": {"notification": {...}}}
    PATCH /notifications/read-all            -> {"data": {"updatedCount": N}}

Все ответы завёрнуты в {"message": ..., "data": ..., "error": ...}.
Авторизация — Bearer токен из конфигурации.
"""
from __future__ import annotations

import asyncio
import json
import logging
from functools import wraps
from typing import Any, Callable, List, Optional

import aiohttp
from pydantic import ValidationError

from config import config
from services.errors import RemoteServiceError
from services.notification_store import Notification, NotificationPayload

logger = logging.getLogger(__name__)


def _is_transient(error: Exception) -> bool:
    """Повторяем только сетевые ошибки и 5xx."""
    if isinstance(error, RemoteServiceError):
        return error.status is None or error.status >= 500
    return False


def retry(max_attempts: int = 3, delay: float = 1.0, should_retry: Callable[[Exception], bool] = _is_transient):
    """Декоратор для повторных попыток при временных ошибках."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_attempts - 1 or not should_retry(e):
                        raise
                    logger.warning(
                        "%s failed (attempt %s/%s), retrying: %s",
                        func.__name__, attempt + 1, max_attempts, e,
                    )
                    await asyncio.sleep(delay * (attempt + 1))
        return wrapper
    return decorator


class NotificationClient:
    """HTTP-клиент сервиса уведомлений."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url if base_url is not None else config.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else config.API_TOKEN
        self.timeout = aiohttp.ClientTimeout(total=timeout if timeout is not None else config.API_TIMEOUT)
        self._session: Optional[aiohttp.ClientSession] = None

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers(), timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @retry(max_attempts=config.API_RETRY_ATTEMPTS, delay=config.API_RETRY_DELAY)
    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Notifications API error [%s %s]: %r", method, path, e)
            raise RemoteServiceError(f"Network error: {e!r}") from e

        try:
            body = json.loads(text) if text else {}
        except ValueError:
            logger.error("Notifications API [%s %s] returned non-JSON response (status=%s)", method, path, status)
            raise RemoteServiceError("Backend returned non-JSON response", status=status)

        if status >= 400:
            message = None
            if isinstance(body, dict):
                message = body.get("error") or body.get("message")
            logger.error("Notifications API [%s %s] failed: status=%s error=%s", method, path, status, message)
            raise RemoteServiceError(message or f"Request failed with status {status}", status=status)

        if isinstance(body, dict):
            return body.get("data")
        return body

    async def fetch_notifications(self, limit: int = 50, offset: int = 0) -> List[Notification]:
        data = await self._request("GET", "/notifications", params={"limit": str(limit), "offset": str(offset)})
        raw_items = (data or {}).get("notifications") or []
        notifications = []
        for raw in raw_items:
            try:
                notifications.append(NotificationPayload.model_validate(raw).to_notification())
            except ValidationError as e:
                logger.warning("Skipping malformed notification %r: %s", raw.get("_id") if isinstance(raw, dict) else raw, e)
        logger.debug("Fetched %s notifications (limit=%s offset=%s)", len(notifications), limit, offset)
        return notifications

    async def mark_read(self, notification_id: str) -> None:
        await self._request("PATCH", f"/notifications/{notification_id}/read")

    async def mark_all_read(self) -> int:
        data = await self._request("PATCH", "/notifications/read-all")
        return int((data or {}).get("updatedCount", 0))
