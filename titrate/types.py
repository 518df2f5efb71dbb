"""
All type definitions, enums, and dataclasses

Records handled by the fulfillment engine:
- DoseStage / DoseSchedule: the provider-authored titration plan
- Prescription / Subscription: the mutable lifecycle records
- FulfillmentLedgerEntry: write-once proof that a billing event was fulfilled
- BillingEvent / RenewalResult: processor input and output
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from titrate.core.exceptions import ScheduleDefinitionError


class PrescriptionStatus(Enum):
    """
    Prescription status.

    State transitions:
        PENDING_PAYMENT → PENDING_SIGNATURE → ACTIVE → COMPLETED
                ↓                 ↓             ↓
            CANCELLED          REPLACED    CANCELLED / REPLACED
    """

    PENDING_PAYMENT = "pending_payment"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REPLACED = "replaced"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PRESCRIPTION_STATUSES


TERMINAL_PRESCRIPTION_STATUSES = frozenset(
    {
        PrescriptionStatus.COMPLETED,
        PrescriptionStatus.CANCELLED,
        PrescriptionStatus.REPLACED,
    }
)


class SubscriptionStatus(Enum):
    """Subscription status. CANCELLED is terminal."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class BillingEventType(Enum):
    """Kind of signal delivered by the billing provider."""

    INITIAL = "initial"
    RENEWAL = "renewal"
    CANCELLATION = "cancellation"


class RenewalOutcome(Enum):
    """What a processed billing event ended up doing."""

    DISPENSED = "dispensed"
    """An order was created and recorded in the ledger"""

    DUPLICATE = "duplicate"
    """The event was already in the ledger; nothing was done"""

    SCHEDULE_COMPLETE = "schedule_complete"
    """No stage was due; the prescription was completed"""

    CANCELLED = "cancelled"
    """A cancellation event was applied"""

    IGNORED = "ignored"
    """A cancellation event arrived for records that were already terminal"""


# ============================================
# DOSE SCHEDULE
# ============================================


@dataclass(frozen=True)
class DoseStage:
    """
    One step of a dose-escalation schedule.

    Attributes:
        stage_index: Zero-based position in the schedule
        dose_label: Human readable dose (e.g. "2.5mg")
        catalog_variant_id: External catalog variant dispensed for this stage
        price_id: External billing price charged for this stage
    """

    stage_index: int
    dose_label: str
    catalog_variant_id: str
    price_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_index": self.stage_index,
            "dose_label": self.dose_label,
            "catalog_variant_id": self.catalog_variant_id,
            "price_id": self.price_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DoseStage:
        return cls(
            stage_index=int(data["stage_index"]),
            dose_label=data["dose_label"],
            catalog_variant_id=data["catalog_variant_id"],
            price_id=data["price_id"],
        )


class DoseSchedule:
    """
    Ordered, immutable sequence of dose stages.

    Stage indices must be exactly 0..N-1 in order. An empty schedule is
    allowed so that records without a plan can still be loaded; every
    progression function treats it as "nothing to dispense".

    Example:
        >>> schedule = DoseSchedule.from_labels(
        ...     [("2.5mg", "var-25", "price-25"), ("5mg", "var-50", "price-50")]
        ... )
        >>> schedule.max_stage
        1
    """

    __slots__ = ("_stages",)

    def __init__(self, stages: Iterable[DoseStage] = ()):
        stages = tuple(stages)
        for position, stage in enumerate(stages):
            if stage.stage_index != position:
                msg = (
                    f"Dose schedule must be gapless and zero-based: "
                    f"position {position} holds stage_index {stage.stage_index}"
                )
                raise ScheduleDefinitionError(msg)
        self._stages = stages

    @classmethod
    def from_labels(cls, entries: Iterable[tuple[str, str, str]]) -> DoseSchedule:
        """Build a schedule from (dose_label, catalog_variant_id, price_id) tuples."""
        return cls(
            DoseStage(index, label, variant, price)
            for index, (label, variant, price) in enumerate(entries)
        )

    @classmethod
    def from_list(cls, data: list[dict[str, Any]] | None) -> DoseSchedule:
        return cls(DoseStage.from_dict(item) for item in data or [])

    def to_list(self) -> list[dict[str, Any]]:
        return [stage.to_dict() for stage in self._stages]

    @property
    def stages(self) -> tuple[DoseStage, ...]:
        return self._stages

    @property
    def max_stage(self) -> int | None:
        """Highest stage index, or None for an empty schedule."""
        return len(self._stages) - 1 if self._stages else None

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[DoseStage]:
        return iter(self._stages)

    def __bool__(self) -> bool:
        return bool(self._stages)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DoseSchedule):
            return NotImplemented
        return self._stages == other._stages

    def __hash__(self) -> int:
        return hash(self._stages)

    def __repr__(self) -> str:
        labels = ", ".join(stage.dose_label for stage in self._stages)
        return f"DoseSchedule([{labels}])"


# ============================================
# LIFECYCLE RECORDS
# ============================================


@dataclass
class Prescription:
    """
    A recurring prescription walking a fixed dose schedule.

    ``refills_remaining`` counts renewals left after the initial
    dispensation; for a full schedule of N stages it starts at N-1.
    """

    patient_id: str
    prescriber_id: str
    dose_schedule: DoseSchedule
    refills_remaining: int

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: PrescriptionStatus = PrescriptionStatus.PENDING_PAYMENT
    start_date: date = field(default_factory=date.today)
    end_date: date | None = None
    replaces: str | None = None
    replaced_by: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        if self.refills_remaining < 0:
            msg = f"refills_remaining must be >= 0, got {self.refills_remaining}"
            raise ValueError(msg)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "prescriber_id": self.prescriber_id,
            "dose_schedule": self.dose_schedule.to_list(),
            "refills_remaining": self.refills_remaining,
            "status": self.status.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "replaces": self.replaces,
            "replaced_by": self.replaced_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Subscription:
    """Billing subscription driving renewals for one prescription."""

    prescription_id: str
    patient_id: str
    external_customer_ref: str

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    external_subscription_ref: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    next_charge_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prescription_id": self.prescription_id,
            "patient_id": self.patient_id,
            "external_customer_ref": self.external_customer_ref,
            "external_subscription_ref": self.external_subscription_ref,
            "status": self.status.value,
            "next_charge_date": (
                self.next_charge_date.isoformat() if self.next_charge_date else None
            ),
        }


@dataclass(frozen=True)
class FulfillmentLedgerEntry:
    """Write-once record that a billing event was turned into an order."""

    external_event_id: str
    prescription_id: str
    stage_index_dispensed: int
    order_ref: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_event_id": self.external_event_id,
            "prescription_id": self.prescription_id,
            "stage_index_dispensed": self.stage_index_dispensed,
            "order_ref": self.order_ref,
            "created_at": self.created_at.isoformat(),
        }


# ============================================
# PROCESSOR INPUT / OUTPUT
# ============================================


@dataclass(frozen=True)
class BillingEvent:
    """Signal from the billing provider, delivered at-least-once."""

    external_event_id: str
    prescription_id: str
    event_type: BillingEventType

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BillingEvent:
        return cls(
            external_event_id=data["external_event_id"],
            prescription_id=data["prescription_id"],
            event_type=BillingEventType(data["event_type"]),
        )


@dataclass(frozen=True)
class RenewalResult:
    """
    Result of processing one billing event.

    Attributes:
        outcome: What the processor did
        prescription_id: Prescription the event targeted
        external_event_id: Billing event identifier
        stage_index: Stage dispensed (or previously dispensed, for duplicates)
        order_ref: External order reference, when one exists
        refills_remaining: Refill counter after processing, when known
    """

    outcome: RenewalOutcome
    prescription_id: str
    external_event_id: str
    stage_index: int | None = None
    order_ref: str | None = None
    refills_remaining: int | None = None

    @property
    def dispensed(self) -> bool:
        return self.outcome == RenewalOutcome.DISPENSED

    @classmethod
    def from_ledger(cls, entry: FulfillmentLedgerEntry) -> RenewalResult:
        """Rebuild the result recorded for an already processed event."""
        return cls(
            outcome=RenewalOutcome.DUPLICATE,
            prescription_id=entry.prescription_id,
            external_event_id=entry.external_event_id,
            stage_index=entry.stage_index_dispensed,
            order_ref=entry.order_ref,
        )
