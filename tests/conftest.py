"""
Pytest configuration and shared fixtures for fulfillment tests

Provides:
- 3-stage dose schedule and prescription factories
- In-memory and SQLite (:memory:) storage
- In-memory collaborators (fakes for failure modes live in fakes.py)
- Metrics on a private CollectorRegistry per test
"""

import pytest
from prometheus_client import CollectorRegistry

from fakes import build_schedule
from titrate.fulfillment.collaborators import InMemoryNotificationSink, InMemoryOrderGateway
from titrate.fulfillment.processor import RecurringFulfillmentProcessor
from titrate.fulfillment.signals import PrescriptionSignals
from titrate.fulfillment.sweeper import HousekeepingSweeper
from titrate.monitoring.prometheus import FulfillmentMetrics
from titrate.storage.backends.memory import InMemoryFulfillmentStorage
from titrate.storage.backends.sqlite import SQLiteFulfillmentStorage
from titrate.types import (
    DoseSchedule,
    Prescription,
    PrescriptionStatus,
    Subscription,
)

# ============================================
# STORAGE
# ============================================


@pytest.fixture
def schedule():
    return build_schedule(3)


@pytest.fixture
def storage():
    return InMemoryFulfillmentStorage()


@pytest.fixture
async def sqlite_storage():
    store = SQLiteFulfillmentStorage(":memory:")
    await store.initialize()
    yield store
    await store.close()


# ============================================
# COLLABORATORS & METRICS
# ============================================


@pytest.fixture
def orders():
    return InMemoryOrderGateway()


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return FulfillmentMetrics(registry=registry)


# ============================================
# COMPONENTS
# ============================================


@pytest.fixture
def processor(storage, orders, notifier, metrics):
    return RecurringFulfillmentProcessor(
        storage, orders, notifier=notifier, metrics=metrics, external_call_timeout=1.0
    )


@pytest.fixture
def signals(storage, notifier, processor):
    return PrescriptionSignals(storage, notifier=notifier, locks=processor.locks)


@pytest.fixture
def sweeper(storage, notifier, processor):
    return HousekeepingSweeper(
        storage, notifier=notifier, locks=processor.locks, pending_payment_ttl_days=30
    )


# ============================================
# RECORD FACTORIES
# ============================================


@pytest.fixture
def make_prescription(storage, schedule):
    """
    Factory creating and saving a prescription, with an open subscription
    for active ones.
    """

    async def _make(
        refills: int = 2,
        status: PrescriptionStatus = PrescriptionStatus.ACTIVE,
        dose_schedule: DoseSchedule | None = None,
        with_subscription: bool = True,
        **kwargs,
    ) -> Prescription:
        prescription = Prescription(
            patient_id=kwargs.pop("patient_id", "patient-1"),
            prescriber_id=kwargs.pop("prescriber_id", "prescriber-1"),
            dose_schedule=schedule if dose_schedule is None else dose_schedule,
            refills_remaining=refills,
            status=status,
            **kwargs,
        )
        await storage.save_prescription(prescription)
        if with_subscription and status == PrescriptionStatus.ACTIVE:
            await storage.save_subscription(
                Subscription(
                    prescription_id=prescription.id,
                    patient_id=prescription.patient_id,
                    external_customer_ref="cust_1",
                    external_subscription_ref=f"sub_{prescription.id[:8]}",
                )
            )
        return prescription

    return _make
