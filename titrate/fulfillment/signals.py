"""
Lifecycle signals that do not come from renewals.

Payment authorisation, prescriber signature, clinical cancellation,
replacement, and billing pause/resume all change prescription or
subscription status. Each runs under the prescription's lock so it never
interleaves with a renewal for the same prescription.
"""

from __future__ import annotations

from dataclasses import replace as copy_record

from titrate.core.exceptions import InvalidStateError, NotFoundError
from titrate.core.logger import get_logger
from titrate.fulfillment.base import LifecycleCoordinator
from titrate.types import Prescription, PrescriptionStatus, Subscription, SubscriptionStatus

logger = get_logger(__name__)


class PrescriptionSignals(LifecycleCoordinator):
    """
    Applies lifecycle signals to prescriptions and their subscriptions.

    Usage:
        >>> signals = PrescriptionSignals(storage, locks=processor.locks)
        >>> await signals.mark_paid(prescription.id)
        >>> await signals.mark_signed(prescription.id, subscription=subscription)
    """

    async def _load(self, prescription_id: str) -> Prescription:
        prescription = await self.storage.get_prescription(prescription_id)
        if prescription is None:
            raise NotFoundError("Prescription", prescription_id)
        return prescription

    async def _load_open_subscription(self, prescription_id: str) -> Subscription:
        subscription = await self.storage.find_open_subscription(prescription_id)
        if subscription is None:
            raise NotFoundError("Subscription for prescription", prescription_id)
        return subscription

    # ==========================================================================
    # Prescription
    # ==========================================================================

    async def mark_paid(self, prescription_id: str) -> Prescription:
        """Payment for the first dispensation was authorised."""
        async with self.locks.hold(prescription_id):
            prescription = await self._load(prescription_id)
            self.prescriptions.mark_paid(prescription)
            await self.storage.save_prescription(prescription)
            return prescription

    async def mark_signed(
        self, prescription_id: str, subscription: Subscription | None = None
    ) -> Prescription:
        """
        The prescriber signed; the prescription becomes active.

        Args:
            prescription_id: Prescription to activate
            subscription: Billing subscription to open alongside it (optional)
        """
        async with self.locks.hold(prescription_id):
            prescription = await self._load(prescription_id)
            self.prescriptions.mark_signed(prescription)
            await self.storage.save_prescription(prescription)
            if subscription is not None:
                await self._open_subscription(prescription, subscription)
            return prescription

    async def start_subscription(self, subscription: Subscription) -> Subscription:
        """Open the billing subscription for an active prescription."""
        async with self.locks.hold(subscription.prescription_id):
            prescription = await self._load(subscription.prescription_id)
            if prescription.status != PrescriptionStatus.ACTIVE:
                msg = (
                    f"Cannot start a subscription for prescription {prescription.id} "
                    f"in status {prescription.status.value}"
                )
                raise InvalidStateError(
                    msg, record_id=prescription.id, from_status=prescription.status.value
                )
            return await self._open_subscription(prescription, subscription)

    async def _open_subscription(
        self, prescription: Prescription, subscription: Subscription
    ) -> Subscription:
        if subscription.prescription_id != prescription.id:
            msg = (
                f"Subscription {subscription.id} belongs to prescription "
                f"{subscription.prescription_id}, not {prescription.id}"
            )
            raise ValueError(msg)

        existing = await self.storage.find_open_subscription(prescription.id)
        if existing is not None and existing.id != subscription.id:
            msg = f"Prescription {prescription.id} already has open subscription {existing.id}"
            raise InvalidStateError(msg, record_id=prescription.id)

        await self.storage.save_subscription(subscription)
        logger.info(f"Subscription {subscription.id} opened for prescription {prescription.id}")
        return subscription

    async def cancel_prescription(
        self, prescription_id: str, reason: str = "clinical_cancellation"
    ) -> Prescription:
        """Cancel a prescription and stop its billing."""
        async with self.locks.hold(prescription_id):
            prescription = await self._load(prescription_id)
            self.prescriptions.cancel(prescription)
            await self.storage.save_prescription(prescription)
            await self._cancel_open_subscription(prescription, reason=reason)
            return prescription

    async def replace_prescription(
        self, old_prescription_id: str, replacement: Prescription
    ) -> Prescription:
        """
        Supersede a prescription with a new one.

        The old prescription must be active or pending signature. Both records
        are saved in one write, then the old subscription is cancelled. The
        replacement's first renewal dispenses the initial stage.

        Returns:
            The stored replacement
        """
        async with self.locks.hold(old_prescription_id):
            old = await self._load(old_prescription_id)
            if replacement.id == old.id:
                msg = f"Prescription {old.id} cannot replace itself"
                raise ValueError(msg)
            if await self.storage.get_prescription(replacement.id) is not None:
                msg = f"Replacement prescription {replacement.id} already exists"
                raise InvalidStateError(msg, record_id=replacement.id)

            self.prescriptions.replace(old, replacement.id)
            new = copy_record(replacement, replaces=old.id)
            await self.storage.save_prescriptions([old, new])
            logger.info(f"Prescription {old.id} replaced by {new.id}")

            await self._cancel_open_subscription(old, reason="prescription_replaced")
            return new

    # ==========================================================================
    # Subscription
    # ==========================================================================

    async def pause_subscription(self, prescription_id: str) -> Subscription:
        """Billing paused the subscription."""
        async with self.locks.hold(prescription_id):
            subscription = await self._load_open_subscription(prescription_id)
            self.subscriptions.pause(subscription)
            await self.storage.save_subscription(subscription)
            return subscription

    async def resume_subscription(self, prescription_id: str) -> Subscription:
        """Billing resumed a paused subscription."""
        async with self.locks.hold(prescription_id):
            subscription = await self._load_open_subscription(prescription_id)
            if subscription.status != SubscriptionStatus.PAUSED:
                return subscription
            prescription = await self._load(prescription_id)
            if prescription.status != PrescriptionStatus.ACTIVE:
                msg = (
                    f"Cannot resume billing for prescription {prescription_id} "
                    f"in status {prescription.status.value}"
                )
                raise InvalidStateError(
                    msg, record_id=prescription_id, from_status=prescription.status.value
                )
            self.subscriptions.resume(subscription)
            await self.storage.save_subscription(subscription)
            return subscription
