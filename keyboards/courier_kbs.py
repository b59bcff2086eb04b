from typing import Sequence

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from services.deliveries import FAILURE_REASONS, Delivery, DeliveryStatus
from services.notification_store import Notification

STATUS_BUTTONS = {
    DeliveryStatus.PICKED_UP: "📦 Picked up",
    DeliveryStatus.IN_PROGRESS: "🛵 Start delivery",
    DeliveryStatus.DELIVERED: "✅ Delivered",
    DeliveryStatus.FAILED: "❌ Failed",
    DeliveryStatus.CANCELLED: "🚫 Cancelled",
}

# Лимит Telegram на текст кнопки — 64 символа, обрезаем с запасом
BUTTON_TEXT_LIMIT = 48


def _short(text: str, limit: int = BUTTON_TEXT_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def get_courier_menu_kb(is_online: bool, unread_count: int = 0) -> InlineKeyboardMarkup:
    """Главное меню курьера"""
    if is_online:
        toggle = InlineKeyboardButton(text="⚪ Go offline", callback_data="courier:offline")
    else:
        toggle = InlineKeyboardButton(text="🟢 Go online", callback_data="courier:online")
    notifications_text = "🔔 Notifications"
    if unread_count:
        notifications_text += f" ({unread_count})"
    return InlineKeyboardMarkup(inline_keyboard=[
        [toggle],
        [InlineKeyboardButton(text="📦 My deliveries", callback_data="courier:deliveries")],
        [InlineKeyboardButton(text=notifications_text, callback_data="notif:list")],
    ])


def get_offer_kb(delivery_id: str) -> InlineKeyboardMarkup:
    """Принять / отклонить новый оффер"""
    return InlineKeyboardMarkup(inline_keyboard=[[
        InlineKeyboardButton(text="✅ Accept", callback_data=f"offer:accept:{delivery_id}"),
        InlineKeyboardButton(text="✖️ Reject", callback_data=f"offer:reject:{delivery_id}"),
    ]])


def get_deliveries_kb(deliveries: Sequence[Delivery], page: int = 0, per_page: int = 10) -> InlineKeyboardMarkup:
    """Список доставок с пагинацией."""
    start = page * per_page
    rows = [
        [InlineKeyboardButton(
            text=_short(f"#{d.order_id} · {d.customer_name}"),
            callback_data=f"delivery:open:{d.id}",
        )]
        for d in deliveries[start:start + per_page]
    ]
    nav = []
    if page > 0:
        nav.append(InlineKeyboardButton(text="◀️", callback_data=f"courier:deliveries:{page - 1}"))
    if start + per_page < len(deliveries):
        nav.append(InlineKeyboardButton(text="▶️", callback_data=f"courier:deliveries:{page + 1}"))
    if nav:
        rows.append(nav)
    rows.append([InlineKeyboardButton(text="⬅️ Back", callback_data="courier:menu")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_delivery_status_kb(delivery: Delivery) -> InlineKeyboardMarkup:
    """Кнопки допустимых следующих статусов доставки."""
    rows = []
    for status in delivery.next_statuses():
        # FAILED — через выбор причины
        if status == DeliveryStatus.FAILED:
            callback_data = f"delivery:reasons:{delivery.id}"
        else:
            callback_data = f"delivery:status:{delivery.id}:{status.value}"
        rows.append([InlineKeyboardButton(text=STATUS_BUTTONS[status], callback_data=callback_data)])
    rows.append([InlineKeyboardButton(text="⬅️ Back", callback_data="courier:deliveries")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_failure_reason_kb(delivery: Delivery) -> InlineKeyboardMarkup:
    """Причины неудачной доставки"""
    rows = [
        [InlineKeyboardButton(text=label, callback_data=f"delivery:fail:{delivery.id}:{reason_id}")]
        for reason_id, label in FAILURE_REASONS.items()
    ]
    rows.append([InlineKeyboardButton(text="⬅️ Back", callback_data=f"delivery:open:{delivery.id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_notifications_kb(notifications: Sequence[Notification], unread_count: int) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(
            text=_short(("🔵 " if not n.read else "") + (n.title or "Notification")),
            callback_data=f"notif:read:{n.id}",
        )]
        for n in notifications
    ]
    actions = [InlineKeyboardButton(text="🔄 Refresh", callback_data="notif:refresh")]
    if unread_count:
        actions.insert(0, InlineKeyboardButton(text="✅ Mark all read", callback_data="notif:read_all"))
    rows.append(actions)
    rows.append([InlineKeyboardButton(text="⬅️ Back", callback_data="courier:menu")])
    return InlineKeyboardMarkup(inline_keyboard=rows)
