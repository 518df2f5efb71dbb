"""
Recurring Fulfillment Processor - turns billing events into dose dispensations.

For every renewal the processor decides which dose stage is due, creates the
order, records the billing event in the ledger and moves the refill counter.
Billing events are delivered at-least-once and concurrently; the ledger plus
the per-prescription lock make dispensation exactly-once.

Flow for one renewal:
    1. Ledger hit → return the recorded result, nothing else happens
    2. Lock the prescription, re-check the ledger
    3. Load the prescription (NotFoundError / InvalidStateError)
    4. Resolve the due stage; none due → complete the prescription
    5. Resolve catalog ids, create the order
    6. Commit ledger entry + refill decrement in one write
    7. Notify, re-point the next charge at the upcoming stage's price

Usage:
    >>> processor = RecurringFulfillmentProcessor(storage, orders=gateway)
    >>> result = await processor.process_billing_event(
    ...     BillingEvent("inv_123", prescription.id, BillingEventType.RENEWAL)
    ... )
    >>> result.outcome
    <RenewalOutcome.DISPENSED: 'dispensed'>
"""

from __future__ import annotations

import time

from titrate.core.exceptions import (
    DuplicateEventError,
    ExternalFulfillmentError,
    InvalidStateError,
    NotFoundError,
    ScheduleInvariantViolation,
)
from titrate.core.logger import get_logger
from titrate.fulfillment.base import DEFAULT_EXTERNAL_CALL_TIMEOUT, LifecycleCoordinator
from titrate.fulfillment.collaborators import (
    BillingPlanUpdater,
    CatalogResolver,
    CatalogVariant,
    NotificationSink,
    OrderFailed,
    OrderGateway,
    ScheduleCatalogResolver,
)
from titrate.fulfillment.events import DoseAdvanced
from titrate.fulfillment.locks import PrescriptionLockRegistry
from titrate.ledger import IdempotencyLedger
from titrate.monitoring.logging import bind_fulfillment_context
from titrate.monitoring.prometheus import FulfillmentMetrics
from titrate.progression import (
    current_stage_index,
    max_stage_of,
    resolve_stage,
    stage_at,
    violates_schedule_depth,
)
from titrate.storage.interfaces import FulfillmentStorage
from titrate.types import (
    BillingEvent,
    BillingEventType,
    DoseStage,
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    RenewalOutcome,
    RenewalResult,
)

logger = get_logger(__name__)


class RecurringFulfillmentProcessor(LifecycleCoordinator):
    """
    Processes initial, renewal and cancellation billing events.

    Args:
        storage: Backend holding prescriptions, subscriptions and the ledger
        orders: Gateway that creates fulfillment orders
        catalog: Resolves stages to catalog/price ids (default: ids on the stage)
        notifier: Receives lifecycle notifications (default: log only)
        plan_updater: Re-points the next charge after a dispensation (optional)
        locks: Lock registry shared with other coordinators of the same engine
        metrics: Prometheus metrics (None disables them)
        external_call_timeout: Seconds allowed for each collaborator call
    """

    def __init__(
        self,
        storage: FulfillmentStorage,
        orders: OrderGateway,
        catalog: CatalogResolver | None = None,
        notifier: NotificationSink | None = None,
        plan_updater: BillingPlanUpdater | None = None,
        locks: PrescriptionLockRegistry | None = None,
        metrics: FulfillmentMetrics | None = None,
        external_call_timeout: float = DEFAULT_EXTERNAL_CALL_TIMEOUT,
    ):
        super().__init__(
            storage,
            notifier=notifier,
            locks=locks,
            metrics=metrics,
            external_call_timeout=external_call_timeout,
        )
        self.orders = orders
        self.catalog = catalog if catalog is not None else ScheduleCatalogResolver()
        self.plan_updater = plan_updater
        self.ledger = IdempotencyLedger(storage)

    async def process_billing_event(self, event: BillingEvent) -> RenewalResult:
        """Dispatch a billing event by type."""
        if event.event_type == BillingEventType.CANCELLATION:
            return await self.cancel_from_billing(event.external_event_id, event.prescription_id)
        return await self.process_renewal_event(
            event.external_event_id,
            event.prescription_id,
            is_initial_order=event.event_type == BillingEventType.INITIAL,
        )

    async def process_renewal_event(
        self,
        external_event_id: str,
        prescription_id: str,
        is_initial_order: bool = False,
    ) -> RenewalResult:
        """
        Dispense the stage due for one billing event.

        Returns:
            RenewalResult with outcome DISPENSED, DUPLICATE or SCHEDULE_COMPLETE

        Raises:
            NotFoundError: Prescription does not exist
            InvalidStateError: Prescription is completed, cancelled or replaced
            ScheduleInvariantViolation: Refills exceed the schedule depth
            ExternalFulfillmentError: Catalog or order failed; safe to redeliver
        """
        event_type = BillingEventType.INITIAL if is_initial_order else BillingEventType.RENEWAL
        with bind_fulfillment_context(
            prescription_id=prescription_id,
            external_event_id=external_event_id,
            event_type=event_type.value,
        ):
            return await self._measure(
                event_type,
                self._process_renewal(external_event_id, prescription_id, is_initial_order),
            )

    async def cancel_from_billing(
        self, external_event_id: str, prescription_id: str
    ) -> RenewalResult:
        """
        Apply a cancellation from the billing provider.

        The open subscription is cancelled, and so is the prescription if it
        is still pending payment or active. Records that are already terminal
        are left alone and the event is reported as IGNORED.
        """
        with bind_fulfillment_context(
            prescription_id=prescription_id,
            external_event_id=external_event_id,
            event_type=BillingEventType.CANCELLATION.value,
        ):
            return await self._measure(
                BillingEventType.CANCELLATION,
                self._cancel_from_billing(external_event_id, prescription_id),
            )

    async def _measure(self, event_type: BillingEventType, work) -> RenewalResult:
        start = time.perf_counter()
        outcome = "error"
        try:
            result = await work
            outcome = result.outcome.value
            return result
        except ExternalFulfillmentError as e:
            outcome = "retryable_error"
            logger.warning(f"External fulfillment failure ({e.collaborator}): {e}")
            raise
        except (NotFoundError, InvalidStateError) as e:
            logger.error(f"Billing event rejected: {e}")
            raise
        finally:
            if self.metrics:
                self.metrics.record_event(event_type.value, outcome, time.perf_counter() - start)

    # ==========================================================================
    # Renewal
    # ==========================================================================

    async def _process_renewal(
        self, external_event_id: str, prescription_id: str, is_initial_order: bool
    ) -> RenewalResult:
        existing = await self.ledger.lookup(external_event_id)
        if existing is not None:
            return self._duplicate(existing, prescription_id)

        async with self.locks.hold(prescription_id):
            # A concurrent delivery may have committed while we waited
            existing = await self.ledger.lookup(external_event_id)
            if existing is not None:
                return self._duplicate(existing, prescription_id)

            prescription = await self._load_renewable(prescription_id)
            return await self._dispense(external_event_id, prescription, is_initial_order)

    def _duplicate(self, entry: FulfillmentLedgerEntry, prescription_id: str) -> RenewalResult:
        if entry.prescription_id != prescription_id:
            logger.warning(
                f"Event {entry.external_event_id} was recorded for prescription "
                f"{entry.prescription_id}, redelivered for {prescription_id}"
            )
        logger.info(f"Event {entry.external_event_id} already processed; skipping")
        if self.metrics:
            self.metrics.record_duplicate()
        return RenewalResult.from_ledger(entry)

    async def _load_renewable(self, prescription_id: str) -> Prescription:
        prescription = await self.storage.get_prescription(prescription_id)
        if prescription is None:
            raise NotFoundError("Prescription", prescription_id)

        if prescription.is_terminal:
            msg = (
                f"Renewal received for prescription {prescription_id} "
                f"in terminal status {prescription.status.value}"
            )
            raise InvalidStateError(
                msg, record_id=prescription_id, from_status=prescription.status.value
            )

        max_stage = max_stage_of(prescription.dose_schedule)
        if violates_schedule_depth(prescription.refills_remaining, max_stage):
            logger.critical(
                f"Prescription {prescription_id} halted: {prescription.refills_remaining} "
                f"refills remaining exceed schedule depth (max stage {max_stage})"
            )
            if self.metrics:
                self.metrics.record_invariant_violation()
            raise ScheduleInvariantViolation(
                prescription_id, prescription.refills_remaining, max_stage
            )

        return prescription

    async def _dispense(
        self, external_event_id: str, prescription: Prescription, is_initial_order: bool
    ) -> RenewalResult:
        if (
            not is_initial_order
            and prescription.replaces
            and not await self.ledger.has_dispensed(prescription.id)
        ):
            logger.info(
                f"First renewal of replacement prescription {prescription.id} "
                f"(replaces {prescription.replaces}); dispensing initial stage"
            )
            is_initial_order = True

        stage = resolve_stage(
            prescription.dose_schedule, prescription.refills_remaining, is_initial_order
        )
        if stage is None:
            logger.info(f"No stage due for prescription {prescription.id}; completing")
            await self._complete_schedule(prescription)
            return RenewalResult(
                outcome=RenewalOutcome.SCHEDULE_COMPLETE,
                prescription_id=prescription.id,
                external_event_id=external_event_id,
                refills_remaining=prescription.refills_remaining,
            )

        variant = await self._resolve_variant(stage)
        order = await self._call_external(
            "order_gateway",
            self.orders.create_order(prescription.id, variant.catalog_variant_id),
        )
        if isinstance(order, OrderFailed):
            self._record_external_failure("order_gateway")
            msg = f"Order for prescription {prescription.id} stage {stage.stage_index} failed"
            raise ExternalFulfillmentError(msg, collaborator="order_gateway", reason=order.reason)

        expected_refills = prescription.refills_remaining
        if not is_initial_order:
            prescription.refills_remaining = max(0, expected_refills - 1)

        entry = FulfillmentLedgerEntry(
            external_event_id=external_event_id,
            prescription_id=prescription.id,
            stage_index_dispensed=stage.stage_index,
            order_ref=order.order_ref,
        )
        try:
            await self.ledger.record(entry, prescription, expected_refills=expected_refills)
        except DuplicateEventError:
            existing = await self.ledger.lookup(external_event_id)
            if existing is None:
                raise
            logger.warning(
                f"Order {order.order_ref} created for event {external_event_id} "
                f"lost the ledger race and needs review"
            )
            return self._duplicate(existing, prescription.id)

        max_stage = max_stage_of(prescription.dose_schedule)
        logger.info(
            f"Dispensed stage {stage.stage_index} ({stage.dose_label}) for prescription "
            f"{prescription.id}; {prescription.refills_remaining} refills remaining"
        )
        if self.metrics:
            self.metrics.record_dispensed(stage.stage_index)

        await self._notify(
            DoseAdvanced(
                prescription_id=prescription.id,
                patient_id=prescription.patient_id,
                stage_index=stage.stage_index,
                dose_label=stage.dose_label,
                order_ref=order.order_ref,
                is_final_stage=stage.stage_index == max_stage,
            )
        )
        await self._update_next_plan(prescription)

        return RenewalResult(
            outcome=RenewalOutcome.DISPENSED,
            prescription_id=prescription.id,
            external_event_id=external_event_id,
            stage_index=stage.stage_index,
            order_ref=order.order_ref,
            refills_remaining=prescription.refills_remaining,
        )

    async def _resolve_variant(self, stage: DoseStage) -> CatalogVariant:
        variant = await self._call_external("catalog", self.catalog.resolve_variant(stage))
        if variant is None:
            self._record_external_failure("catalog")
            msg = f"No catalog variant for stage {stage.stage_index} ({stage.dose_label})"
            raise ExternalFulfillmentError(msg, collaborator="catalog", reason="variant_not_found")
        return variant

    async def _update_next_plan(self, prescription: Prescription) -> None:
        """Charge the next renewal at the upcoming stage's price. Never raises."""
        if self.plan_updater is None:
            return

        upcoming = stage_at(
            prescription.dose_schedule,
            current_stage_index(
                prescription.refills_remaining, max_stage_of(prescription.dose_schedule)
            ),
        )
        if upcoming is None:
            return

        subscription = await self.storage.find_open_subscription(prescription.id)
        if subscription is None or not subscription.external_subscription_ref:
            logger.debug(f"No billing subscription to update for prescription {prescription.id}")
            return

        try:
            variant = await self._resolve_variant(upcoming)
            await self._call_external(
                "billing_plan",
                self.plan_updater.update_plan(
                    subscription.external_subscription_ref, variant.price_id
                ),
            )
        except ExternalFulfillmentError as e:
            logger.warning(
                f"Next renewal for prescription {prescription.id} still charges the "
                f"previous price: {e}"
            )
            return

        logger.info(
            f"Subscription {subscription.external_subscription_ref} moved to "
            f"{variant.price_id} for stage {upcoming.stage_index}"
        )

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    async def _cancel_from_billing(
        self, external_event_id: str, prescription_id: str
    ) -> RenewalResult:
        async with self.locks.hold(prescription_id):
            prescription = await self.storage.get_prescription(prescription_id)
            if prescription is None:
                raise NotFoundError("Prescription", prescription_id)

            subscription = await self._cancel_open_subscription(
                prescription, reason="billing_cancellation"
            )

            prescription_cancelled = False
            if prescription.status in (
                PrescriptionStatus.ACTIVE,
                PrescriptionStatus.PENDING_PAYMENT,
            ):
                self.prescriptions.cancel(prescription)
                await self.storage.save_prescription(prescription)
                prescription_cancelled = True

        if subscription is None and not prescription_cancelled:
            logger.info(f"Cancellation {external_event_id} found nothing left to cancel")
            outcome = RenewalOutcome.IGNORED
        else:
            outcome = RenewalOutcome.CANCELLED

        return RenewalResult(
            outcome=outcome,
            prescription_id=prescription_id,
            external_event_id=external_event_id,
            refills_remaining=prescription.refills_remaining,
        )
