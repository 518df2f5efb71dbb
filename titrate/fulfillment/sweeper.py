"""
Housekeeping sweeps.

Run periodically (cron, scheduler, ``titrate sweep``) to close records that
the event flow left open:

- Checkouts that never paid are cancelled after a TTL
- Subscriptions whose prescription is gone or terminal are cancelled

A failure on one record is logged and counted; the sweep moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from titrate.core.exceptions import TitrateError
from titrate.core.logger import get_logger
from titrate.fulfillment.base import LifecycleCoordinator
from titrate.fulfillment.events import SubscriptionCancelled
from titrate.storage.errors import StorageError
from titrate.types import Prescription, PrescriptionStatus, Subscription, SubscriptionStatus

logger = get_logger(__name__)

DEFAULT_PENDING_PAYMENT_TTL_DAYS = 30


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    name: str
    examined: int = 0
    affected_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def affected(self) -> int:
        return len(self.affected_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "examined": self.examined,
            "affected": self.affected,
            "failed": self.failed,
            "affected_ids": list(self.affected_ids),
            "failed_ids": list(self.failed_ids),
        }


class HousekeepingSweeper(LifecycleCoordinator):
    """
    Cancels abandoned checkouts and orphaned subscriptions.

    Usage:
        >>> sweeper = HousekeepingSweeper(storage, locks=processor.locks)
        >>> report = await sweeper.cancel_overdue_pending_payments()
        >>> print(f"Cancelled {report.affected} checkouts")
    """

    def __init__(
        self,
        *args,
        pending_payment_ttl_days: int = DEFAULT_PENDING_PAYMENT_TTL_DAYS,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.pending_payment_ttl_days = pending_payment_ttl_days

    async def run_all(self, now: datetime | None = None) -> list[SweepReport]:
        return [
            await self.cancel_overdue_pending_payments(now=now),
            await self.reconcile_subscriptions(),
        ]

    async def cancel_overdue_pending_payments(self, now: datetime | None = None) -> SweepReport:
        """Cancel prescriptions left in pending_payment past the TTL."""
        report = SweepReport(name="overdue_pending_payments")
        cutoff = (now or datetime.now(UTC)) - timedelta(days=self.pending_payment_ttl_days)

        candidates = await self.storage.list_prescriptions(PrescriptionStatus.PENDING_PAYMENT)
        for candidate in candidates:
            report.examined += 1
            if _as_utc(candidate.created_at) >= cutoff:
                continue

            try:
                async with self.locks.hold(candidate.id):
                    prescription = await self.storage.get_prescription(candidate.id)
                    # Paid while we were sweeping
                    if (
                        prescription is None
                        or prescription.status != PrescriptionStatus.PENDING_PAYMENT
                    ):
                        continue
                    self.prescriptions.cancel(prescription)
                    await self.storage.save_prescription(prescription)
                    await self._cancel_open_subscription(prescription, reason="payment_overdue")
            except (TitrateError, StorageError) as e:
                logger.error(f"Could not cancel overdue prescription {candidate.id}: {e}")
                report.failed_ids.append(candidate.id)
                continue

            report.affected_ids.append(candidate.id)

        logger.info(
            f"Overdue pending payments: {report.affected} cancelled, "
            f"{report.failed} failed, {report.examined} examined"
        )
        return report

    async def reconcile_subscriptions(self) -> SweepReport:
        """Cancel open subscriptions whose prescription is missing or terminal."""
        report = SweepReport(name="orphaned_subscriptions")

        subscriptions = await self.storage.list_subscriptions()
        for candidate in subscriptions:
            if candidate.status == SubscriptionStatus.CANCELLED:
                continue
            report.examined += 1

            try:
                async with self.locks.hold(candidate.prescription_id):
                    prescription = await self.storage.get_prescription(candidate.prescription_id)
                    if prescription is not None and not prescription.is_terminal:
                        continue

                    subscription = await self.storage.get_subscription(candidate.id)
                    if subscription is None or not self.subscriptions.cancel(subscription):
                        continue
                    await self.storage.save_subscription(subscription)
                    await self._notify_orphan_cancelled(subscription, prescription)
            except (TitrateError, StorageError) as e:
                logger.error(f"Could not reconcile subscription {candidate.id}: {e}")
                report.failed_ids.append(candidate.id)
                continue

            report.affected_ids.append(candidate.id)

        logger.info(
            f"Subscription reconciliation: {report.affected} cancelled, "
            f"{report.failed} failed, {report.examined} examined"
        )
        return report

    async def _notify_orphan_cancelled(
        self, subscription: Subscription, prescription: Prescription | None
    ) -> None:
        if prescription is None:
            reason = "prescription_missing"
        else:
            reason = f"prescription_{prescription.status.value}"
        await self._notify(
            SubscriptionCancelled(
                prescription_id=subscription.prescription_id,
                patient_id=subscription.patient_id,
                subscription_id=subscription.id,
                reason=reason,
            )
        )
