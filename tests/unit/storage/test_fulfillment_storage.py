"""
Contract tests run against every fulfillment storage backend.
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from titrate.core.exceptions import DuplicateEventError
from titrate.storage import (
    HealthStatus,
    InMemoryFulfillmentStorage,
    SQLiteFulfillmentStorage,
    StaleRecordError,
)
from titrate.types import (
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    Subscription,
    SubscriptionStatus,
)


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request):
    if request.param == "memory":
        store = InMemoryFulfillmentStorage()
    else:
        store = SQLiteFulfillmentStorage(":memory:")
    async with store:
        yield store


@pytest.fixture
def prescription(schedule):
    return Prescription(
        "patient-1",
        "doc-1",
        schedule,
        refills_remaining=2,
        status=PrescriptionStatus.ACTIVE,
        start_date=date(2026, 1, 5),
    )


class TestPrescriptions:
    @pytest.mark.asyncio
    async def test_save_and_get(self, backend, prescription):
        await backend.save_prescription(prescription)
        loaded = await backend.get_prescription(prescription.id)
        assert loaded == prescription
        assert loaded.dose_schedule == prescription.dose_schedule

    @pytest.mark.asyncio
    async def test_get_missing(self, backend):
        assert await backend.get_prescription("nope") is None

    @pytest.mark.asyncio
    async def test_loaded_records_are_copies(self, backend, prescription):
        await backend.save_prescription(prescription)
        loaded = await backend.get_prescription(prescription.id)
        loaded.refills_remaining = 0
        again = await backend.get_prescription(prescription.id)
        assert again.refills_remaining == 2

    @pytest.mark.asyncio
    async def test_upsert(self, backend, prescription):
        await backend.save_prescription(prescription)
        prescription.status = PrescriptionStatus.COMPLETED
        prescription.end_date = date(2026, 4, 1)
        await backend.save_prescription(prescription)
        loaded = await backend.get_prescription(prescription.id)
        assert loaded.status == PrescriptionStatus.COMPLETED
        assert loaded.end_date == date(2026, 4, 1)

    @pytest.mark.asyncio
    async def test_save_many_and_filter(self, backend, prescription, schedule):
        other = Prescription("patient-2", "doc-1", schedule, refills_remaining=1)
        await backend.save_prescriptions([prescription, other])
        active = await backend.list_prescriptions(PrescriptionStatus.ACTIVE)
        assert [p.id for p in active] == [prescription.id]
        assert len(await backend.list_prescriptions()) == 2

    @pytest.mark.asyncio
    async def test_replacement_links_survive(self, backend, prescription, schedule):
        replacement = Prescription(
            "patient-1", "doc-1", schedule, refills_remaining=2, replaces=prescription.id
        )
        prescription.status = PrescriptionStatus.REPLACED
        prescription.replaced_by = replacement.id
        await backend.save_prescriptions([prescription, replacement])

        assert (await backend.get_prescription(prescription.id)).replaced_by == replacement.id
        assert (await backend.get_prescription(replacement.id)).replaces == prescription.id


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_find_open_subscription(self, backend, prescription):
        old = Subscription(prescription.id, "patient-1", "cust_1", status=SubscriptionStatus.CANCELLED)
        current = Subscription(prescription.id, "patient-1", "cust_1", external_subscription_ref="sub_1")
        await backend.save_subscription(old)
        await backend.save_subscription(current)

        found = await backend.find_open_subscription(prescription.id)
        assert found.id == current.id
        assert found.external_subscription_ref == "sub_1"

    @pytest.mark.asyncio
    async def test_paused_counts_as_open(self, backend, prescription):
        paused = Subscription(prescription.id, "patient-1", "cust_1", status=SubscriptionStatus.PAUSED)
        await backend.save_subscription(paused)
        assert (await backend.find_open_subscription(prescription.id)).id == paused.id

    @pytest.mark.asyncio
    async def test_no_open_subscription(self, backend):
        assert await backend.find_open_subscription("rx-missing") is None

    @pytest.mark.asyncio
    async def test_list_by_status(self, backend, prescription):
        sub = Subscription(prescription.id, "patient-1", "cust_1", next_charge_date=date(2026, 2, 1))
        await backend.save_subscription(sub)
        assert len(await backend.list_subscriptions(SubscriptionStatus.ACTIVE)) == 1
        assert await backend.list_subscriptions(SubscriptionStatus.CANCELLED) == []
        loaded = await backend.get_subscription(sub.id)
        assert loaded.next_charge_date == date(2026, 2, 1)


class TestCommitDispensation:
    @pytest.mark.asyncio
    async def test_commit_writes_entry_and_refills(self, backend, prescription):
        await backend.save_prescription(prescription)
        prescription.refills_remaining = 1
        entry = FulfillmentLedgerEntry("inv_1", prescription.id, 1, order_ref="order-1")

        await backend.commit_dispensation(entry, prescription, expected_refills=2)

        assert (await backend.get_prescription(prescription.id)).refills_remaining == 1
        stored = await backend.get_ledger_entry("inv_1")
        assert stored.stage_index_dispensed == 1
        assert stored.order_ref == "order-1"

    @pytest.mark.asyncio
    async def test_duplicate_event_rejected_without_side_effects(self, backend, prescription):
        await backend.save_prescription(prescription)
        prescription.refills_remaining = 1
        await backend.commit_dispensation(
            FulfillmentLedgerEntry("inv_1", prescription.id, 1), prescription, expected_refills=2
        )

        prescription.refills_remaining = 0
        with pytest.raises(DuplicateEventError):
            await backend.commit_dispensation(
                FulfillmentLedgerEntry("inv_1", prescription.id, 2),
                prescription,
                expected_refills=1,
            )

        assert (await backend.get_prescription(prescription.id)).refills_remaining == 1
        assert len(await backend.list_ledger_entries(prescription.id)) == 1

    @pytest.mark.asyncio
    async def test_stale_refills_rejected_without_ledger_entry(self, backend, prescription):
        await backend.save_prescription(prescription)
        prescription.refills_remaining = 0

        with pytest.raises(StaleRecordError):
            await backend.commit_dispensation(
                FulfillmentLedgerEntry("inv_1", prescription.id, 1),
                prescription,
                expected_refills=5,
            )

        assert await backend.get_ledger_entry("inv_1") is None
        assert (await backend.get_prescription(prescription.id)).refills_remaining == 2

    @pytest.mark.asyncio
    async def test_ledger_entries_oldest_first(self, backend, prescription):
        await backend.save_prescription(prescription)
        base = datetime(2026, 1, 1, tzinfo=UTC)
        prescription.refills_remaining = 1
        await backend.commit_dispensation(
            FulfillmentLedgerEntry("inv_b", prescription.id, 1, created_at=base + timedelta(days=30)),
            prescription,
            expected_refills=2,
        )
        prescription.refills_remaining = 1
        await backend.commit_dispensation(
            FulfillmentLedgerEntry("inv_a", prescription.id, 0, created_at=base),
            prescription,
            expected_refills=1,
        )

        entries = await backend.list_ledger_entries(prescription.id)
        assert [e.external_event_id for e in entries] == ["inv_a", "inv_b"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, backend):
        result = await backend.health_check()
        assert result.status == HealthStatus.HEALTHY
        assert result.is_healthy
        assert result.to_dict()["status"] == "healthy"
