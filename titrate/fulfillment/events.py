"""
Lifecycle notifications handed to the notification collaborator.

Each event carries the identifiers a downstream service needs to render its
own message; nothing here decides wording or delivery channel.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar


@dataclass(frozen=True)
class LifecycleNotification:
    """Base class for fire-and-forget lifecycle notifications."""

    event_type: ClassVar[str] = "lifecycle_notification"

    prescription_id: str
    patient_id: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC), kw_only=True)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass(frozen=True)
class DoseAdvanced(LifecycleNotification):
    """A stage was dispensed for a prescription."""

    event_type: ClassVar[str] = "dose_advanced"

    stage_index: int
    dose_label: str
    order_ref: str | None = None
    is_final_stage: bool = False


@dataclass(frozen=True)
class SubscriptionCancelled(LifecycleNotification):
    """A subscription moved to cancelled."""

    event_type: ClassVar[str] = "subscription_cancelled"

    subscription_id: str
    reason: str


@dataclass(frozen=True)
class PrescriptionCompleted(LifecycleNotification):
    """The prescription's schedule was exhausted."""

    event_type: ClassVar[str] = "prescription_completed"
