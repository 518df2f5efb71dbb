"""
Idempotency ledger for billing events.

A billing event counts as processed if and only if the ledger holds an
entry for its ``external_event_id``. Refill counters are never used to
infer that; after a partial failure they can be ambiguous.
"""

from __future__ import annotations

from titrate.core.exceptions import DuplicateEventError
from titrate.core.logger import get_logger
from titrate.storage.interfaces import FulfillmentStorage
from titrate.types import FulfillmentLedgerEntry, Prescription

logger = get_logger(__name__)


class IdempotencyLedger:
    """
    Write-once record of billing events turned into orders.

    Usage:
        ledger = IdempotencyLedger(storage)

        if await ledger.lookup("inv_123") is None:
            ...
            await ledger.record(entry, prescription, expected_refills=2)
    """

    def __init__(self, storage: FulfillmentStorage):
        self.storage = storage

    async def lookup(self, external_event_id: str) -> FulfillmentLedgerEntry | None:
        return await self.storage.get_ledger_entry(external_event_id)

    async def entries_for(self, prescription_id: str) -> list[FulfillmentLedgerEntry]:
        return await self.storage.list_ledger_entries(prescription_id)

    async def has_dispensed(self, prescription_id: str) -> bool:
        """Whether any billing event was ever fulfilled for the prescription."""
        return bool(await self.storage.list_ledger_entries(prescription_id))

    async def record(
        self,
        entry: FulfillmentLedgerEntry,
        prescription: Prescription,
        expected_refills: int,
    ) -> FulfillmentLedgerEntry:
        """
        Insert the entry and save the prescription atomically.

        Raises:
            DuplicateEventError: Another writer recorded the same event first
            StaleRecordError: The refill counter moved underneath the caller
        """
        try:
            await self.storage.commit_dispensation(entry, prescription, expected_refills)
        except DuplicateEventError:
            logger.info(
                f"Ledger conflict on event {entry.external_event_id}; "
                f"already recorded by a concurrent writer"
            )
            raise

        logger.debug(
            f"Recorded event {entry.external_event_id}: prescription "
            f"{entry.prescription_id} stage {entry.stage_index_dispensed}"
        )
        return entry
