"""Unit tests for the delivery registry and status lifecycle."""
from datetime import datetime

import pytest

from conftest import make_delivery
from services.deliveries import (
    FAILURE_REASONS, DashboardStatus, DeliveryRegistry, DeliveryStatus, is_allowed_transition,
)
from services.errors import ErrorKind


class TestDeliveryRegistry:
    def setup_method(self):
        self.registry = DeliveryRegistry()

    def test_add_forces_pending(self):
        """New deliveries always start in PENDING, whatever the snapshot says."""
        assert self.registry.add(make_delivery("d1", status=DeliveryStatus.DELIVERED))
        assert self.registry.get("d1").status == DeliveryStatus.PENDING

    def test_duplicate_add_keeps_first(self):
        """Adding the same id twice keeps a single record with the first fields."""
        assert self.registry.add(make_delivery("d1", customer_name="First"))
        assert not self.registry.add(make_delivery("d1", customer_name="Second"))
        assert len(self.registry) == 1
        assert self.registry.get("d1").customer_name == "First"

    def test_list_preserves_insertion_order(self):
        for delivery_id in ("c", "a", "b"):
            self.registry.add(make_delivery(delivery_id))
        assert [d.id for d in self.registry.list()] == ["c", "a", "b"]

    def test_lifecycle_to_delivered(self):
        """pending -> picked_up -> in_progress -> delivered."""
        self.registry.add(make_delivery("d1"))
        for status in (DeliveryStatus.PICKED_UP, DeliveryStatus.IN_PROGRESS, DeliveryStatus.DELIVERED):
            result = self.registry.transition("d1", status)
            assert result.error is None
            assert result.changed
        delivery = self.registry.get("d1")
        assert delivery.status == DeliveryStatus.DELIVERED
        assert delivery.is_terminal
        assert isinstance(delivery.started_at, datetime)

    def test_terminal_status_is_final(self):
        """A delivered order cannot be moved anywhere else."""
        self.registry.add(make_delivery("d1"))
        self.registry.transition("d1", DeliveryStatus.DELIVERED)

        result = self.registry.transition("d1", DeliveryStatus.IN_PROGRESS)

        assert result.error == ErrorKind.INVALID_TRANSITION
        assert not result.changed
        assert self.registry.get("d1").status == DeliveryStatus.DELIVERED

    def test_backward_transition_rejected(self):
        self.registry.add(make_delivery("d1"))
        self.registry.transition("d1", DeliveryStatus.IN_PROGRESS)

        result = self.registry.transition("d1", DeliveryStatus.PICKED_UP)

        assert result.error == ErrorKind.INVALID_TRANSITION
        assert self.registry.get("d1").status == DeliveryStatus.IN_PROGRESS

    def test_same_status_is_noop(self):
        self.registry.add(make_delivery("d1"))
        before = self.registry.get("d1")

        result = self.registry.transition("d1", DeliveryStatus.PENDING)

        assert result.error is None
        assert not result.changed
        assert self.registry.get("d1") is before

    def test_unknown_id_not_found(self):
        """Transition for an unknown id reports NOT_FOUND and creates nothing."""
        result = self.registry.transition("ghost", DeliveryStatus.PICKED_UP)
        assert result.error == ErrorKind.NOT_FOUND
        assert result.delivery is None
        assert "ghost" not in self.registry
        assert len(self.registry) == 0

    def test_failed_and_cancelled_from_any_active(self):
        self.registry.add(make_delivery("d1"))
        self.registry.add(make_delivery("d2"))
        self.registry.transition("d2", DeliveryStatus.PICKED_UP)

        assert self.registry.transition("d1", DeliveryStatus.CANCELLED).changed
        assert self.registry.transition("d2", DeliveryStatus.FAILED).changed

    def test_snapshots_are_immutable(self):
        self.registry.add(make_delivery("d1"))
        snapshot = self.registry.get("d1")
        with pytest.raises(AttributeError):
            snapshot.status = DeliveryStatus.DELIVERED
        self.registry.transition("d1", DeliveryStatus.PICKED_UP)
        # Старый снимок не меняется вместе с реестром
        assert snapshot.status == DeliveryStatus.PENDING

    def test_filter_by_status_and_dashboard_status(self):
        self.registry.add(make_delivery("d1"))
        self.registry.add(make_delivery("d2"))
        self.registry.add(make_delivery("d3"))
        self.registry.transition("d2", DeliveryStatus.PICKED_UP)
        self.registry.transition("d3", DeliveryStatus.IN_PROGRESS)

        assert [d.id for d in self.registry.list(DeliveryStatus.PICKED_UP)] == ["d2"]
        assert [d.id for d in self.registry.list(DashboardStatus.IN_PROGRESS)] == ["d2", "d3"]
        assert [d.id for d in self.registry.list(DashboardStatus.PENDING)] == ["d1"]

    def test_batches_sorted_by_stop(self):
        self.registry.add(make_delivery("d1", batch_id="B1", stop_number=2, total_stops=2))
        self.registry.add(make_delivery("d2"))
        self.registry.add(make_delivery("d3", batch_id="B1", stop_number=1, total_stops=2))

        batches = self.registry.batches()

        assert list(batches) == ["B1"]
        assert [d.id for d in batches["B1"]] == ["d3", "d1"]
        assert [d.id for d in self.registry.list(batch_id="B1")] == ["d1", "d3"]

    def test_batch_stops_without_number_go_last(self):
        self.registry.add(make_delivery("d1", batch_id="B1"))
        self.registry.add(make_delivery("d2", batch_id="B1", stop_number=2))
        self.registry.add(make_delivery("d3", batch_id="B1"))
        self.registry.add(make_delivery("d4", batch_id="B1", stop_number=1))

        assert [d.id for d in self.registry.batches()["B1"]] == ["d4", "d2", "d1", "d3"]

    def test_failed_records_reason_and_notes(self):
        """A failed delivery keeps the reason the courier picked."""
        self.registry.add(make_delivery("d1"))
        self.registry.transition("d1", DeliveryStatus.IN_PROGRESS)

        result = self.registry.transition(
            "d1", DeliveryStatus.FAILED, reason=FAILURE_REASONS["wrong_address"], notes="Gate code missing",
        )

        assert result.changed
        assert result.delivery.failure_reason == "Wrong address"
        assert result.delivery.failure_notes == "Gate code missing"

    def test_reason_ignored_for_other_statuses(self):
        self.registry.add(make_delivery("d1"))

        result = self.registry.transition("d1", DeliveryStatus.DELIVERED, reason="Other")

        assert result.delivery.failure_reason is None

    def test_add_clears_failure_fields(self):
        self.registry.add(make_delivery("d1", failure_reason="Other", failure_notes="stale"))
        delivery = self.registry.get("d1")
        assert delivery.failure_reason is None
        assert delivery.failure_notes is None

    def test_summary(self):
        for delivery_id in ("d1", "d2", "d3", "d4"):
            self.registry.add(make_delivery(delivery_id))
        self.registry.transition("d1", DeliveryStatus.DELIVERED)
        self.registry.transition("d2", DeliveryStatus.FAILED)
        self.registry.transition("d3", DeliveryStatus.CANCELLED)

        summary = self.registry.summary()

        assert summary.total == 4
        assert summary.delivered == 1
        assert summary.failed == 1
        assert summary.pending == 1


class TestStatusRules:
    def test_dashboard_mapping(self):
        assert DeliveryStatus.PICKED_UP.dashboard_status == DashboardStatus.IN_PROGRESS
        assert DeliveryStatus.DELIVERED.dashboard_status == DashboardStatus.COMPLETED
        assert DeliveryStatus.CANCELLED.dashboard_status == DashboardStatus.CANCELLED

    def test_forward_skip_allowed(self):
        assert is_allowed_transition(DeliveryStatus.PENDING, DeliveryStatus.DELIVERED)

    def test_next_statuses(self):
        delivery = make_delivery("d1", status=DeliveryStatus.PICKED_UP)
        assert delivery.next_statuses() == [
            DeliveryStatus.IN_PROGRESS,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.FAILED,
            DeliveryStatus.CANCELLED,
        ]
        assert make_delivery("d2", status=DeliveryStatus.FAILED).next_statuses() == []
