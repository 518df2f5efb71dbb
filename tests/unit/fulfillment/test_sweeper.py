"""
Tests for housekeeping sweeps.
"""

from datetime import UTC, datetime, timedelta

import pytest

from fakes import BrokenNotificationSink
from titrate.fulfillment.events import SubscriptionCancelled
from titrate.fulfillment.sweeper import HousekeepingSweeper, SweepReport
from titrate.types import PrescriptionStatus, Subscription, SubscriptionStatus

NOW = datetime(2026, 6, 1, tzinfo=UTC)


class TestOverduePendingPayments:
    @pytest.mark.asyncio
    async def test_old_unpaid_checkouts_are_cancelled(self, sweeper, storage, make_prescription):
        stale = await make_prescription(
            status=PrescriptionStatus.PENDING_PAYMENT, created_at=NOW - timedelta(days=45)
        )
        fresh = await make_prescription(
            status=PrescriptionStatus.PENDING_PAYMENT, created_at=NOW - timedelta(days=5)
        )
        active = await make_prescription(created_at=NOW - timedelta(days=90))

        report = await sweeper.cancel_overdue_pending_payments(now=NOW)

        assert report.affected_ids == [stale.id]
        assert report.examined == 2
        assert report.failed == 0
        assert (await storage.get_prescription(stale.id)).status == PrescriptionStatus.CANCELLED
        assert (await storage.get_prescription(fresh.id)).status == (
            PrescriptionStatus.PENDING_PAYMENT
        )
        assert (await storage.get_prescription(active.id)).status == PrescriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_ttl_is_configurable(self, storage, make_prescription):
        prescription = await make_prescription(
            status=PrescriptionStatus.PENDING_PAYMENT, created_at=NOW - timedelta(days=8)
        )
        sweeper = HousekeepingSweeper(storage, pending_payment_ttl_days=7)

        report = await sweeper.cancel_overdue_pending_payments(now=NOW)

        assert report.affected_ids == [prescription.id]

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_treated_as_utc(self, sweeper, make_prescription):
        prescription = await make_prescription(
            status=PrescriptionStatus.PENDING_PAYMENT,
            created_at=datetime(2026, 1, 1),
        )
        report = await sweeper.cancel_overdue_pending_payments(now=NOW)
        assert report.affected_ids == [prescription.id]


class TestReconcileSubscriptions:
    @pytest.mark.asyncio
    async def test_subscription_of_terminal_prescription_is_cancelled(
        self, sweeper, storage, notifier, make_prescription
    ):
        prescription = await make_prescription()
        prescription.status = PrescriptionStatus.COMPLETED
        await storage.save_prescription(prescription)

        report = await sweeper.reconcile_subscriptions()

        assert report.affected == 1
        assert await storage.find_open_subscription(prescription.id) is None
        [notice] = notifier.of_type(SubscriptionCancelled)
        assert notice.reason == "prescription_completed"

    @pytest.mark.asyncio
    async def test_orphaned_subscription_is_cancelled(self, sweeper, storage, notifier):
        orphan = Subscription("rx-gone", "patient-9", "cust_9", status=SubscriptionStatus.PAUSED)
        await storage.save_subscription(orphan)

        report = await sweeper.reconcile_subscriptions()

        assert report.affected_ids == [orphan.id]
        assert (await storage.get_subscription(orphan.id)).status == SubscriptionStatus.CANCELLED
        assert notifier.of_type(SubscriptionCancelled)[0].reason == "prescription_missing"

    @pytest.mark.asyncio
    async def test_healthy_subscriptions_untouched(self, sweeper, storage, make_prescription):
        prescription = await make_prescription()

        report = await sweeper.reconcile_subscriptions()

        assert report.affected == 0
        assert report.examined == 1
        assert await storage.find_open_subscription(prescription.id) is not None

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing(self, sweeper, storage):
        await storage.save_subscription(Subscription("rx-gone", "patient-9", "cust_9"))
        await sweeper.reconcile_subscriptions()

        report = await sweeper.reconcile_subscriptions()

        assert report.examined == 0
        assert report.affected == 0

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_stop_sweep(self, storage):
        sweeper = HousekeepingSweeper(storage, notifier=BrokenNotificationSink())
        await storage.save_subscription(Subscription("rx-gone", "patient-9", "cust_9"))

        report = await sweeper.reconcile_subscriptions()

        assert report.affected == 1
        assert report.failed == 0


class TestSweepReport:
    @pytest.mark.asyncio
    async def test_run_all(self, sweeper):
        reports = await sweeper.run_all(now=NOW)
        assert [r.name for r in reports] == ["overdue_pending_payments", "orphaned_subscriptions"]

    def test_to_dict(self):
        report = SweepReport(name="x", examined=3, affected_ids=["a"], failed_ids=["b"])
        assert report.to_dict() == {
            "name": "x",
            "examined": 3,
            "affected": 1,
            "failed": 1,
            "affected_ids": ["a"],
            "failed_ids": ["b"],
        }
