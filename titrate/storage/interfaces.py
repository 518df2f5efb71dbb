"""
Fulfillment storage interface.

One backend holds prescriptions, subscriptions and the fulfillment ledger so
that recording a dispensation and moving the refill counter can happen in a
single atomic write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from titrate.storage.health import HealthCheckResult
from titrate.types import (
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    Subscription,
    SubscriptionStatus,
)


class FulfillmentStorage(ABC):
    """
    Abstract storage for fulfillment records.

    Implementations must guarantee:
    - ``external_event_id`` is unique across the ledger
    - ``commit_dispensation`` is all-or-nothing
    - loaded records are copies; mutating them does not touch storage
      until they are saved

    Usage:
        >>> async with SQLiteFulfillmentStorage("./titrate.db") as storage:
        ...     await storage.save_prescription(prescription)
        ...     loaded = await storage.get_prescription(prescription.id)
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open connections and create schema. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. No-op by default."""

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ==========================================================================
    # Prescriptions
    # ==========================================================================

    @abstractmethod
    async def get_prescription(self, prescription_id: str) -> Prescription | None:
        ...

    @abstractmethod
    async def save_prescription(self, prescription: Prescription) -> None:
        """Insert or update a prescription."""
        ...

    @abstractmethod
    async def save_prescriptions(self, prescriptions: Iterable[Prescription]) -> None:
        """Insert or update several prescriptions atomically."""
        ...

    @abstractmethod
    async def list_prescriptions(
        self, status: PrescriptionStatus | None = None
    ) -> list[Prescription]:
        ...

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        ...

    @abstractmethod
    async def find_open_subscription(self, prescription_id: str) -> Subscription | None:
        """The prescription's subscription that is not cancelled, if any."""
        ...

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> None:
        ...

    @abstractmethod
    async def list_subscriptions(
        self, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        ...

    # ==========================================================================
    # Fulfillment ledger
    # ==========================================================================

    @abstractmethod
    async def get_ledger_entry(self, external_event_id: str) -> FulfillmentLedgerEntry | None:
        ...

    @abstractmethod
    async def list_ledger_entries(self, prescription_id: str) -> list[FulfillmentLedgerEntry]:
        """Entries for a prescription, oldest first."""
        ...

    @abstractmethod
    async def commit_dispensation(
        self,
        entry: FulfillmentLedgerEntry,
        prescription: Prescription,
        expected_refills: int,
    ) -> None:
        """
        Record a dispensation and save the prescription in one transaction.

        Args:
            entry: Ledger entry to insert
            prescription: Prescription with its updated refill counter
            expected_refills: Refill counter the caller read before updating

        Raises:
            DuplicateEventError: The ledger already holds ``entry.external_event_id``
            StaleRecordError: The stored refill counter is not ``expected_refills``
        """
        ...

    # ==========================================================================
    # Health
    # ==========================================================================

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        ...
