"""
Subscription State Machine - Manages subscription status transitions.

State Diagram:

    ┌────────┐  pause()   ┌────────┐
    │ ACTIVE │ ─────────► │ PAUSED │
    │        │ ◄───────── │        │
    └───┬────┘  resume()  └───┬────┘
        │ cancel()            │ cancel()
        ▼                     ▼
    ┌─────────────────────────────┐
    │          CANCELLED          │
    └─────────────────────────────┘
"""

from collections.abc import Callable
from typing import Any

from titrate.core.exceptions import InvalidStateError
from titrate.types import Subscription, SubscriptionStatus


class SubscriptionStateMachine:
    """
    State machine for the subscription lifecycle.

    ``cancel`` is idempotent: cancelling a cancelled subscription changes
    nothing and returns False, so a cancellation notice is tied to the one
    call that actually performed the transition.
    """

    VALID_TRANSITIONS = {
        SubscriptionStatus.ACTIVE: [SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED],
        SubscriptionStatus.PAUSED: [SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED],
        SubscriptionStatus.CANCELLED: [],  # Terminal state
    }

    def __init__(
        self,
        on_transition: Callable[[Subscription, SubscriptionStatus, SubscriptionStatus], Any]
        | None = None,
    ):
        self._on_transition = on_transition

    def _transition(self, subscription: Subscription, target: SubscriptionStatus) -> Subscription:
        old_status = subscription.status
        if target not in self.VALID_TRANSITIONS.get(old_status, []):
            msg = (
                f"Invalid transition for subscription {subscription.id}: "
                f"{old_status.value} → {target.value}"
            )
            raise InvalidStateError(
                msg,
                record_id=subscription.id,
                from_status=old_status.value,
                to_status=target.value,
            )

        subscription.status = target

        if self._on_transition:
            self._on_transition(subscription, old_status, target)

        return subscription

    def pause(self, subscription: Subscription) -> Subscription:
        return self._transition(subscription, SubscriptionStatus.PAUSED)

    def resume(self, subscription: Subscription) -> Subscription:
        return self._transition(subscription, SubscriptionStatus.ACTIVE)

    def cancel(self, subscription: Subscription) -> bool:
        """
        Cancel the subscription.

        Returns:
            True if this call cancelled it, False if it was already cancelled
        """
        if subscription.status == SubscriptionStatus.CANCELLED:
            return False
        self._transition(subscription, SubscriptionStatus.CANCELLED)
        return True
