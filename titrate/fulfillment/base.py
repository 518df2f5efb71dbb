"""
Shared plumbing for everything that mutates prescriptions and subscriptions.

The processor, the lifecycle signals and the housekeeping sweeper all need
the same pieces: one lock registry, both state machines, the notification
sink, metrics, and a timeout-bounded way to call collaborators.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from datetime import date
from typing import Any, TypeVar

from titrate.core.exceptions import ExternalFulfillmentError
from titrate.core.logger import get_logger
from titrate.fulfillment.collaborators import LoggingNotificationSink, NotificationSink
from titrate.fulfillment.events import (
    LifecycleNotification,
    PrescriptionCompleted,
    SubscriptionCancelled,
)
from titrate.fulfillment.locks import PrescriptionLockRegistry
from titrate.lifecycle import PrescriptionStateMachine, SubscriptionStateMachine
from titrate.monitoring.prometheus import FulfillmentMetrics
from titrate.storage.interfaces import FulfillmentStorage
from titrate.types import Prescription, Subscription

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_EXTERNAL_CALL_TIMEOUT = 10.0


class LifecycleCoordinator:
    """
    Base class for components that change lifecycle records.

    Components built from the same engine must share one
    ``PrescriptionLockRegistry``; otherwise a replacement and a renewal for
    the same prescription could interleave.
    """

    def __init__(
        self,
        storage: FulfillmentStorage,
        notifier: NotificationSink | None = None,
        locks: PrescriptionLockRegistry | None = None,
        metrics: FulfillmentMetrics | None = None,
        external_call_timeout: float = DEFAULT_EXTERNAL_CALL_TIMEOUT,
    ):
        self.storage = storage
        self.notifier = notifier if notifier is not None else LoggingNotificationSink()
        self.locks = locks if locks is not None else PrescriptionLockRegistry()
        self.metrics = metrics
        self.external_call_timeout = external_call_timeout

        self.prescriptions = PrescriptionStateMachine(on_transition=self._log_transition)
        self.subscriptions = SubscriptionStateMachine(on_transition=self._log_transition)

    @staticmethod
    def _log_transition(record: Any, old_status: Any, new_status: Any) -> None:
        logger.info(
            f"{type(record).__name__} {record.id}: {old_status.value} → {new_status.value}"
        )

    async def _notify(self, notification: LifecycleNotification) -> None:
        """
        Publish a notification. Sink failures never reach the caller.

        The publish is bounded by ``external_call_timeout``; callers usually
        hold the prescription lock.
        """
        try:
            await asyncio.wait_for(
                self.notifier.publish(notification), timeout=self.external_call_timeout
            )
        except TimeoutError:
            logger.warning(
                f"Notification {notification.event_type} for prescription "
                f"{notification.prescription_id} was dropped: sink timed out after "
                f"{self.external_call_timeout}s"
            )
        except Exception as e:
            logger.warning(
                f"Notification {notification.event_type} for prescription "
                f"{notification.prescription_id} was dropped: {e}"
            )

    async def _call_external(self, collaborator: str, call: Awaitable[T]) -> T:
        """
        Await a collaborator call under the configured timeout.

        Raises:
            ExternalFulfillmentError: The call raised or timed out
        """
        try:
            return await asyncio.wait_for(call, timeout=self.external_call_timeout)
        except TimeoutError as e:
            self._record_external_failure(collaborator)
            msg = f"{collaborator} timed out after {self.external_call_timeout}s"
            raise ExternalFulfillmentError(msg, collaborator=collaborator, reason="timeout") from e
        except ExternalFulfillmentError:
            self._record_external_failure(collaborator)
            raise
        except Exception as e:
            self._record_external_failure(collaborator)
            msg = f"{collaborator} failed: {e}"
            raise ExternalFulfillmentError(msg, collaborator=collaborator, reason=str(e)) from e

    def _record_external_failure(self, collaborator: str) -> None:
        if self.metrics:
            self.metrics.record_external_failure(collaborator)

    # ==========================================================================
    # Terminal transitions
    # ==========================================================================

    async def _cancel_open_subscription(
        self, prescription: Prescription, reason: str
    ) -> Subscription | None:
        """
        Cancel the prescription's open subscription, if it has one.

        ``SubscriptionCancelled`` is published only when this call performed
        the transition.

        Returns:
            The subscription this call cancelled, or None
        """
        subscription = await self.storage.find_open_subscription(prescription.id)
        if subscription is None:
            return None

        if not self.subscriptions.cancel(subscription):
            return None

        await self.storage.save_subscription(subscription)
        await self._notify(
            SubscriptionCancelled(
                prescription_id=prescription.id,
                patient_id=prescription.patient_id,
                subscription_id=subscription.id,
                reason=reason,
            )
        )
        return subscription

    async def _complete_schedule(
        self, prescription: Prescription, on: date | None = None
    ) -> Prescription:
        """Mark the prescription completed and stop its billing."""
        self.prescriptions.complete(prescription, on=on)
        await self.storage.save_prescription(prescription)
        await self._cancel_open_subscription(prescription, reason="schedule_complete")
        await self._notify(
            PrescriptionCompleted(
                prescription_id=prescription.id,
                patient_id=prescription.patient_id,
            )
        )
        return prescription
