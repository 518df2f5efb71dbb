"""
In-Memory Fulfillment Storage - For testing and development.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import replace

from titrate.core.exceptions import DuplicateEventError
from titrate.storage.errors import StaleRecordError
from titrate.storage.health import HealthCheckResult, HealthStatus
from titrate.storage.interfaces import FulfillmentStorage
from titrate.types import (
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    Subscription,
    SubscriptionStatus,
)


class InMemoryFulfillmentStorage(FulfillmentStorage):
    """
    In-memory implementation of fulfillment storage.

    Safe within one event loop: no method awaits between reading and
    writing, so each call is atomic with respect to other coroutines.
    Not shared between processes.

    Usage:
        >>> storage = InMemoryFulfillmentStorage()
        >>> await storage.save_prescription(prescription)
    """

    def __init__(self):
        self._prescriptions: dict[str, Prescription] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._ledger: dict[str, FulfillmentLedgerEntry] = {}

    # Prescriptions

    async def get_prescription(self, prescription_id: str) -> Prescription | None:
        stored = self._prescriptions.get(prescription_id)
        return replace(stored) if stored else None

    async def save_prescription(self, prescription: Prescription) -> None:
        self._prescriptions[prescription.id] = replace(prescription)

    async def save_prescriptions(self, prescriptions: Iterable[Prescription]) -> None:
        copies = [replace(p) for p in prescriptions]
        for copy in copies:
            self._prescriptions[copy.id] = copy

    async def list_prescriptions(
        self, status: PrescriptionStatus | None = None
    ) -> list[Prescription]:
        return [
            replace(p)
            for p in self._prescriptions.values()
            if status is None or p.status == status
        ]

    # Subscriptions

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        stored = self._subscriptions.get(subscription_id)
        return replace(stored) if stored else None

    async def find_open_subscription(self, prescription_id: str) -> Subscription | None:
        for subscription in self._subscriptions.values():
            if (
                subscription.prescription_id == prescription_id
                and subscription.status != SubscriptionStatus.CANCELLED
            ):
                return replace(subscription)
        return None

    async def save_subscription(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.id] = replace(subscription)

    async def list_subscriptions(
        self, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        return [
            replace(s)
            for s in self._subscriptions.values()
            if status is None or s.status == status
        ]

    # Ledger

    async def get_ledger_entry(self, external_event_id: str) -> FulfillmentLedgerEntry | None:
        return self._ledger.get(external_event_id)

    async def list_ledger_entries(self, prescription_id: str) -> list[FulfillmentLedgerEntry]:
        entries = [e for e in self._ledger.values() if e.prescription_id == prescription_id]
        return sorted(entries, key=lambda e: e.created_at)

    async def commit_dispensation(
        self,
        entry: FulfillmentLedgerEntry,
        prescription: Prescription,
        expected_refills: int,
    ) -> None:
        if entry.external_event_id in self._ledger:
            raise DuplicateEventError(entry.external_event_id)

        stored = self._prescriptions.get(prescription.id)
        actual = stored.refills_remaining if stored else None
        if actual != expected_refills:
            raise StaleRecordError(prescription.id, expected_refills, actual)

        self._ledger[entry.external_event_id] = entry
        self._prescriptions[prescription.id] = replace(prescription)

    # Health

    async def health_check(self) -> HealthCheckResult:
        start = time.perf_counter()
        return HealthCheckResult(
            status=HealthStatus.HEALTHY,
            latency_ms=(time.perf_counter() - start) * 1000,
            message="In-memory storage is operational",
            details={
                "backend": "memory",
                "prescriptions": len(self._prescriptions),
                "subscriptions": len(self._subscriptions),
                "ledger_entries": len(self._ledger),
            },
        )
