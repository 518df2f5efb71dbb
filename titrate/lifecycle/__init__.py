"""
Lifecycle state machines for prescriptions and subscriptions.
"""

from titrate.lifecycle.prescription import PrescriptionStateMachine
from titrate.lifecycle.subscription import SubscriptionStateMachine

__all__ = [
    "PrescriptionStateMachine",
    "SubscriptionStateMachine",
]
