import logging
from typing import Any, Mapping, Optional

from aiogram import Bot, Router, types, F
from aiogram.filters import Command

from config import config
from keyboards.courier_kbs import (
    get_courier_menu_kb, get_offer_kb, get_deliveries_kb,
    get_delivery_status_kb, get_failure_reason_kb, get_notifications_kb,
)
from services.deliveries import FAILURE_REASONS, Delivery, DeliveryStatus
from services.driver_session import DriverSession, SessionManager, STATUS_LABELS
from services.errors import ErrorKind
from services.offers import DeliveryOffer
from services.telegram_utils import escape_markdown, format_relative_time, safe_edit_text

logger = logging.getLogger(__name__)
router = Router()

NO_SESSION_TEXT = "Session expired. Send /start to log in again."
# Сколько уведомлений показываем в чате (в сессии хранится вся загруженная страница)
NOTIFICATIONS_SHOWN = 10


def menu_text(driver_session: DriverSession) -> str:
    summary = driver_session.registry.summary()
    status = "🟢 Online" if driver_session.availability.is_online else "⚪ Offline"
    return (
        f"*Courier panel* — {status}\n\n"
        f"Orders: {summary.total} · delivered {summary.delivered} · "
        f"pending {summary.pending} · failed {summary.failed}"
    )


def offer_text(offer: DeliveryOffer) -> str:
    lines = [
        "🆕 *New delivery request*\n",
        f"Order: {escape_markdown(offer.order_id)}",
        f"Customer: {escape_markdown(offer.customer_name)}",
        f"📍 Pickup: {escape_markdown(offer.pickup_location)}",
        f"🏁 Drop-off: {escape_markdown(offer.dropoff_location)}",
    ]
    if offer.estimated_distance:
        lines.append(f"Distance: {escape_markdown(offer.estimated_distance)}")
    if offer.delivery_window:
        lines.append(f"Window: {escape_markdown(offer.delivery_window)}")
    if offer.estimated_earnings is not None:
        lines.append(f"💰 Earnings: {offer.estimated_earnings}")
    if offer.special_instructions:
        lines.append(f"📝 {escape_markdown(offer.special_instructions)}")
    return "\n".join(lines)


def delivery_text(delivery: Delivery) -> str:
    lines = [
        f"*Order {escape_markdown(delivery.order_id)}* — {STATUS_LABELS[delivery.status]}",
        f"Customer: {escape_markdown(delivery.customer_name)} ({escape_markdown(delivery.customer_phone)})",
        f"📍 Pickup: {escape_markdown(delivery.pickup_location)}",
        f"🏁 Drop-off: {escape_markdown(delivery.dropoff_location)}",
    ]
    if delivery.delivery_window:
        lines.append(f"Window: {escape_markdown(delivery.delivery_window)}")
    if delivery.batch_id:
        stop = ""
        if delivery.stop_number and delivery.total_stops:
            stop = f", stop {delivery.stop_number}/{delivery.total_stops}"
        lines.append(f"Batch: {escape_markdown(delivery.batch_id)}{stop}")
    if delivery.special_instructions:
        lines.append(f"📝 {escape_markdown(delivery.special_instructions)}")
    if delivery.failure_reason:
        lines.append(f"❌ Reason: {escape_markdown(delivery.failure_reason)}")
        if delivery.failure_notes:
            lines.append(escape_markdown(delivery.failure_notes))
    return "\n".join(lines)


def deliveries_text(driver_session: DriverSession) -> str:
    deliveries = driver_session.registry.list()
    if not deliveries:
        return "No deliveries yet. Go online to receive new requests."
    lines = ["📦 *My deliveries*\n"]
    for batch_id, items in driver_session.registry.batches().items():
        lines.append(f"*{escape_markdown(batch_id)}*")
        lines.extend(f"  • #{escape_markdown(d.order_id)} — {d.dashboard_status.value}" for d in items)
    single = [d for d in deliveries if d.batch_id is None]
    if single:
        lines.append("*Single orders*")
        lines.extend(f"  • #{escape_markdown(d.order_id)} — {d.dashboard_status.value}" for d in single)
    return "\n".join(lines)


def notifications_text(driver_session: DriverSession) -> str:
    items = driver_session.notifications.notifications[:NOTIFICATIONS_SHOWN]
    if not items:
        return "🔔 *No notifications*\n\nYou're all caught up!"
    unread = driver_session.notifications.unread_count()
    lines = [f"🔔 *Notifications* ({unread} unread)\n"]
    for n in items:
        marker = "🔵 " if not n.read else ""
        lines.append(f"{marker}*{escape_markdown(n.title)}* · {format_relative_time(n.created_at)}")
        if n.body:
            lines.append(escape_markdown(n.body))
    return "\n".join(lines)


async def show_menu(callback: types.CallbackQuery, driver_session: DriverSession) -> None:
    await safe_edit_text(
        callback.message,
        menu_text(driver_session),
        reply_markup=get_courier_menu_kb(
            driver_session.availability.is_online, driver_session.notifications.unread_count()
        ),
    )


async def show_notifications(callback: types.CallbackQuery, driver_session: DriverSession) -> None:
    store = driver_session.notifications
    await safe_edit_text(
        callback.message,
        notifications_text(driver_session),
        reply_markup=get_notifications_kb(store.notifications[:NOTIFICATIONS_SHOWN], store.unread_count()),
    )


async def present_offer(
    bot: Bot,
    sessions: SessionManager,
    telegram_id: int,
    payload: Mapping[str, Any],
) -> Optional[DeliveryOffer]:
    """
    Точка входа для внешнего источника офферов: передать оффер в сессию
    курьера и показать его с кнопками принять/отклонить.
    """
    driver_session = sessions.get(telegram_id)
    if driver_session is None:
        logger.info("Offer for driver %s dropped: no active session", telegram_id)
        return None
    offer, error = driver_session.ingest_offer(payload)
    if error is not None:
        logger.warning("Offer for driver %s not presented: %s", telegram_id, error.value)
        return None
    if offer is None:
        return None
    await bot.send_message(
        chat_id=telegram_id,
        text=offer_text(offer),
        reply_markup=get_offer_kb(offer.id),
        parse_mode="Markdown",
    )
    return offer


@router.message(Command("courier"))
async def cmd_courier(message: types.Message, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await message.answer(NO_SESSION_TEXT)
        return
    await message.answer(
        menu_text(driver_session),
        reply_markup=get_courier_menu_kb(
            driver_session.availability.is_online, driver_session.notifications.unread_count()
        ),
        parse_mode="Markdown",
    )


@router.callback_query(F.data == "courier:menu")
async def courier_menu(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    await show_menu(callback, driver_session)
    await callback.answer()


@router.callback_query(F.data.in_({"courier:online", "courier:offline"}))
async def courier_toggle_availability(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    """Свитч онлайн/офлайн: передаём новое значение, а не инвертируем текущее."""
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    await driver_session.set_availability(callback.data == "courier:online")
    await show_menu(callback, driver_session)
    await callback.answer()


@router.callback_query(F.data.startswith("offer:"))
async def courier_offer_decision(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    try:
        _, action, delivery_id = callback.data.split(":", 2)
    except ValueError:
        await callback.answer("Error", show_alert=True)
        return

    pending = driver_session.offers.pending
    if pending is None or pending.id != delivery_id:
        # Кнопка от старого оффера
        await safe_edit_text(callback.message, "This request is no longer available.", reply_markup=None)
        await callback.answer()
        return

    if action == "accept":
        outcome = await driver_session.accept_offer()
    else:
        outcome = await driver_session.reject_offer()
    if outcome is not None:
        await safe_edit_text(
            callback.message,
            f"{offer_text(pending)}\n\n*{outcome.kind.value.capitalize()}*",
            reply_markup=None,
        )
    await callback.answer()


@router.callback_query(F.data.startswith("courier:deliveries"))
async def courier_deliveries(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    page = 0
    parts = callback.data.split(":")
    if len(parts) == 3 and parts[2].isdigit():
        page = int(parts[2])
    await safe_edit_text(
        callback.message,
        deliveries_text(driver_session),
        reply_markup=get_deliveries_kb(
            driver_session.registry.list(), page=page, per_page=config.DELIVERIES_PER_PAGE
        ),
    )
    await callback.answer()


@router.callback_query(F.data.startswith("delivery:open:"))
async def courier_delivery_detail(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    delivery_id = callback.data.split(":", 2)[2]
    delivery = driver_session.registry.get(delivery_id)
    if delivery is None:
        await callback.answer("Delivery not found", show_alert=True)
        return
    await safe_edit_text(callback.message, delivery_text(delivery), reply_markup=get_delivery_status_kb(delivery))
    await callback.answer()


@router.callback_query(F.data.startswith("delivery:status:"))
async def courier_delivery_status(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    try:
        rest, status_value = callback.data[len("delivery:status:"):].rsplit(":", 1)
        status = DeliveryStatus(status_value)
    except ValueError:
        await callback.answer("Error", show_alert=True)
        return

    result = await driver_session.update_delivery_status(rest, status)
    if result.error == ErrorKind.NOT_FOUND:
        await callback.answer("Delivery not found", show_alert=True)
        return
    await safe_edit_text(
        callback.message, delivery_text(result.delivery), reply_markup=get_delivery_status_kb(result.delivery)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("delivery:reasons:"))
async def courier_delivery_failure_reasons(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    """Перед переводом в FAILED курьер выбирает причину."""
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    delivery = driver_session.registry.get(callback.data[len("delivery:reasons:"):])
    if delivery is None:
        await callback.answer("Delivery not found", show_alert=True)
        return
    await safe_edit_text(
        callback.message,
        f"{delivery_text(delivery)}\n\n*Why did the delivery fail?*",
        reply_markup=get_failure_reason_kb(delivery),
    )
    await callback.answer()


@router.callback_query(F.data.startswith("delivery:fail:"))
async def courier_delivery_failed(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    try:
        delivery_id, reason_id = callback.data[len("delivery:fail:"):].rsplit(":", 1)
        reason = FAILURE_REASONS[reason_id]
    except (ValueError, KeyError):
        await callback.answer("Error", show_alert=True)
        return

    result = await driver_session.update_delivery_status(delivery_id, DeliveryStatus.FAILED, reason=reason)
    if result.error == ErrorKind.NOT_FOUND:
        await callback.answer("Delivery not found", show_alert=True)
        return
    await safe_edit_text(
        callback.message, delivery_text(result.delivery), reply_markup=get_delivery_status_kb(result.delivery)
    )
    await callback.answer()


@router.callback_query(F.data.in_({"notif:list", "notif:refresh"}))
async def courier_notifications(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    if callback.data == "notif:refresh" or not driver_session.notifications.notifications:
        await driver_session.refresh_notifications()
    await show_notifications(callback, driver_session)
    await callback.answer()


@router.callback_query(F.data.startswith("notif:read:"))
async def courier_notification_open(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    notification_id = callback.data.split(":", 2)[2]
    if await driver_session.open_notification(notification_id) == ErrorKind.NOT_FOUND:
        await callback.answer("Notification not found", show_alert=True)
        return
    # Параллельный load() мог убрать уведомление со страницы
    notification = driver_session.notifications.get(notification_id)
    await show_notifications(callback, driver_session)
    if notification is None:
        await callback.answer("Notification not found", show_alert=True)
        return
    # Полный текст — во всплывающем окне
    text = notification.title if not notification.body else f"{notification.title}\n\n{notification.body}"
    await callback.answer(text[:200], show_alert=True)


@router.callback_query(F.data == "notif:read_all")
async def courier_notifications_read_all(callback: types.CallbackQuery, driver_session: Optional[DriverSession]):
    if driver_session is None:
        await callback.answer(NO_SESSION_TEXT, show_alert=True)
        return
    await driver_session.mark_all_notifications_read()
    await show_notifications(callback, driver_session)
    await callback.answer()
