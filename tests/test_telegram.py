"""Tests for the Telegram presentation helpers."""
import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramBadRequest

from handlers.courier import (
    courier_delivery_failed, courier_notification_open, deliveries_text, menu_text, present_offer,
)
from keyboards.courier_kbs import (
    get_delivery_status_kb, get_failure_reason_kb, get_notifications_kb, get_offer_kb,
)
from services.deliveries import FAILURE_REASONS, DeliveryStatus
from services.driver_session import SessionManager
from services.feedback import FeedbackKind, Toast, TransientFeedback
from services.telegram_utils import TelegramToastSink, escape_markdown, format_relative_time

from conftest import FakeNotificationService, make_delivery, make_notification

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


class TestFormatting:
    @pytest.mark.parametrize("delta, expected", [
        (timedelta(seconds=20), "Just now"),
        (timedelta(minutes=5), "5m ago"),
        (timedelta(hours=3), "3h ago"),
        (timedelta(hours=30), "Yesterday"),
        (timedelta(days=4), "4d ago"),
        (timedelta(days=9), "01.05.2024"),
    ])
    def test_relative_time(self, delta, expected):
        assert format_relative_time(NOW - delta, now=NOW) == expected

    def test_escape_markdown(self):
        assert escape_markdown("a_b*c") == "a\\_b\\*c"
        assert escape_markdown(None) == ""


class TestTelegramToastSink:
    def setup_method(self):
        self.bot = MagicMock()
        self.bot.send_message = AsyncMock(return_value=SimpleNamespace(message_id=99))
        self.bot.delete_message = AsyncMock()
        self.sink = TelegramToastSink(self.bot, chat_id=555)

    async def test_show_and_dismiss(self):
        toast = Toast(id=1, message="Saved", kind=FeedbackKind.SUCCESS)

        await self.sink.show(toast)
        await self.sink.dismiss(toast)

        self.bot.send_message.assert_awaited_once_with(chat_id=555, text="✅ Saved", disable_notification=True)
        self.bot.delete_message.assert_awaited_once_with(chat_id=555, message_id=99)

    async def test_dismiss_unknown_toast(self):
        await self.sink.dismiss(Toast(id=2, message="x", kind=FeedbackKind.ERROR))
        self.bot.delete_message.assert_not_awaited()

    async def test_overlapping_toasts_leave_nothing_in_chat(self):
        """A toast replaced while its message was still being sent gets deleted too."""
        gate = asyncio.Event()
        message_ids = iter([100, 101])

        async def send_message(**kwargs):
            message_id = next(message_ids)
            if message_id == 100:
                await gate.wait()
            return SimpleNamespace(message_id=message_id)

        self.bot.send_message = AsyncMock(side_effect=send_message)
        feedback = TransientFeedback(self.sink, dwell_seconds=0.05)

        first = asyncio.create_task(feedback.show("First"))
        await asyncio.sleep(0)
        await feedback.show("Second")
        gate.set()
        await first
        await asyncio.sleep(0.2)

        deleted = sorted(c.kwargs["message_id"] for c in self.bot.delete_message.await_args_list)
        assert deleted == [100, 101]
        assert feedback.current is None

    async def test_dismiss_already_deleted(self):
        self.bot.delete_message.side_effect = TelegramBadRequest(
            method=MagicMock(), message="message to delete not found"
        )
        toast = Toast(id=3, message="Oops", kind=FeedbackKind.ERROR)
        await self.sink.show(toast)

        await self.sink.dismiss(toast)


class TestKeyboards:
    def test_offer_kb(self):
        kb = get_offer_kb("DEL-1")
        data = [b.callback_data for b in kb.inline_keyboard[0]]
        assert data == ["offer:accept:DEL-1", "offer:reject:DEL-1"]

    def test_terminal_delivery_has_only_back(self):
        kb = get_delivery_status_kb(make_delivery("d1", status=DeliveryStatus.DELIVERED))
        assert [row[0].callback_data for row in kb.inline_keyboard] == ["courier:deliveries"]

    def test_failed_goes_through_reason_choice(self):
        kb = get_delivery_status_kb(make_delivery("d1"))
        callbacks = [row[0].callback_data for row in kb.inline_keyboard]
        assert "delivery:reasons:d1" in callbacks
        assert "delivery:status:d1:failed" not in callbacks

        reasons = get_failure_reason_kb(make_delivery("d1"))
        callbacks = [row[0].callback_data for row in reasons.inline_keyboard]
        assert callbacks[0] == "delivery:fail:d1:customer_unavailable"
        assert callbacks[-1] == "delivery:open:d1"
        assert len(callbacks) == len(FAILURE_REASONS) + 1

    def test_notifications_kb_hides_read_all_without_unread(self):
        items = [make_notification("N1", read=True)]
        kb = get_notifications_kb(items, unread_count=0)
        callbacks = [b.callback_data for row in kb.inline_keyboard for b in row]
        assert "notif:read_all" not in callbacks
        assert "notif:read:N1" in callbacks


class TestPresentOffer:
    def setup_method(self):
        self.bot = MagicMock()
        self.bot.send_message = AsyncMock()
        self.sessions = SessionManager(FakeNotificationService)

    async def test_no_session(self):
        assert await present_offer(self.bot, self.sessions, 1, {"id": "D1", "orderId": "O1"}) is None
        self.bot.send_message.assert_not_awaited()

    async def test_offline_driver(self):
        await self.sessions.login(1)
        assert await present_offer(self.bot, self.sessions, 1, {"id": "D1", "orderId": "O1"}) is None
        self.bot.send_message.assert_not_awaited()
        await self.sessions.close_all()

    async def test_online_driver_gets_offer(self):
        driver_session = await self.sessions.login(1)
        await driver_session.set_availability(True)

        offer = await present_offer(self.bot, self.sessions, 1, {"id": "D1", "orderId": "O1"})

        assert offer.id == "D1"
        kwargs = self.bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 1
        assert "O1" in kwargs["text"]
        assert driver_session.offers.pending is offer
        assert "Online" in menu_text(driver_session)
        await self.sessions.close_all()

    async def test_deliveries_text_groups_batches(self):
        driver_session = await self.sessions.login(1)
        driver_session.registry.add(make_delivery("d1", batch_id="B1", stop_number=1, total_stops=1))
        driver_session.registry.add(make_delivery("d2"))

        text = deliveries_text(driver_session)

        assert "*B1*" in text
        assert "Single orders" in text
        await self.sessions.close_all()


class TestCourierHandlers:
    def setup_method(self):
        self.sessions = SessionManager(FakeNotificationService)
        self.callback = MagicMock()
        self.callback.answer = AsyncMock()
        self.callback.message.edit_text = AsyncMock()

    async def test_failed_delivery_reason_button(self):
        driver_session = await self.sessions.login(1)
        driver_session.registry.add(make_delivery("d1"))
        self.callback.data = "delivery:fail:d1:wrong_address"

        await courier_delivery_failed(self.callback, driver_session)

        delivery = driver_session.registry.get("d1")
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.failure_reason == "Wrong address"
        assert "Reason: Wrong address" in self.callback.message.edit_text.await_args.args[0]
        await self.sessions.close_all()

    async def test_unknown_failure_reason(self):
        driver_session = await self.sessions.login(1)
        driver_session.registry.add(make_delivery("d1"))
        self.callback.data = "delivery:fail:d1:bogus"

        await courier_delivery_failed(self.callback, driver_session)

        self.callback.answer.assert_awaited_once_with("Error", show_alert=True)
        assert driver_session.registry.get("d1").status == DeliveryStatus.PENDING
        await self.sessions.close_all()

    async def test_opened_notification_gone_after_reload(self):
        """The notification vanished from the page while it was being marked read."""
        driver_session = await self.sessions.login(1)
        driver_session.open_notification = AsyncMock(return_value=None)
        self.callback.data = "notif:read:N9"

        await courier_notification_open(self.callback, driver_session)

        self.callback.answer.assert_awaited_with("Notification not found", show_alert=True)
        await self.sessions.close_all()
