"""
Prescription State Machine - Manages prescription status transitions.

State Diagram:

    PENDING_PAYMENT ──mark_paid()──► PENDING_SIGNATURE ──mark_signed()──► ACTIVE
          │                                 │                              │
          │ cancel()                        │ replace()                    ├── complete() ──► COMPLETED
          ▼                                 ▼                              ├── cancel()   ──► CANCELLED
      CANCELLED                          REPLACED                          └── replace()  ──► REPLACED

COMPLETED, CANCELLED and REPLACED are terminal.
"""

from collections.abc import Callable
from datetime import date
from typing import Any

from titrate.core.exceptions import InvalidStateError
from titrate.types import Prescription, PrescriptionStatus


class PrescriptionStateMachine:
    """
    State machine for the prescription lifecycle.

    Valid Transitions:
        PENDING_PAYMENT → PENDING_SIGNATURE (via mark_paid)
        PENDING_PAYMENT → CANCELLED (via cancel)
        PENDING_SIGNATURE → ACTIVE (via mark_signed)
        PENDING_SIGNATURE → REPLACED (via replace)
        ACTIVE → COMPLETED (via complete)
        ACTIVE → CANCELLED (via cancel)
        ACTIVE → REPLACED (via replace)

    The machine only validates and applies the status change on the record
    passed in; persisting it is the caller's job.

    Usage:
        >>> sm = PrescriptionStateMachine()
        >>> prescription = sm.mark_paid(prescription)
        >>> prescription = sm.mark_signed(prescription)
    """

    VALID_TRANSITIONS = {
        PrescriptionStatus.PENDING_PAYMENT: [
            PrescriptionStatus.PENDING_SIGNATURE,
            PrescriptionStatus.CANCELLED,
        ],
        PrescriptionStatus.PENDING_SIGNATURE: [
            PrescriptionStatus.ACTIVE,
            PrescriptionStatus.REPLACED,
        ],
        PrescriptionStatus.ACTIVE: [
            PrescriptionStatus.COMPLETED,
            PrescriptionStatus.CANCELLED,
            PrescriptionStatus.REPLACED,
        ],
        PrescriptionStatus.COMPLETED: [],  # Terminal state
        PrescriptionStatus.CANCELLED: [],  # Terminal state
        PrescriptionStatus.REPLACED: [],  # Terminal state
    }

    def __init__(
        self,
        on_transition: Callable[[Prescription, PrescriptionStatus, PrescriptionStatus], Any]
        | None = None,
    ):
        """
        Args:
            on_transition: Optional callback invoked after each status change
        """
        self._on_transition = on_transition

    def can_transition(self, prescription: Prescription, target: PrescriptionStatus) -> bool:
        return target in self.VALID_TRANSITIONS.get(prescription.status, [])

    def _validate_transition(self, prescription: Prescription, target: PrescriptionStatus) -> None:
        if not self.can_transition(prescription, target):
            msg = (
                f"Invalid transition for prescription {prescription.id}: "
                f"{prescription.status.value} → {target.value}"
            )
            raise InvalidStateError(
                msg,
                record_id=prescription.id,
                from_status=prescription.status.value,
                to_status=target.value,
            )

    def _transition(self, prescription: Prescription, target: PrescriptionStatus) -> Prescription:
        old_status = prescription.status
        self._validate_transition(prescription, target)

        prescription.status = target

        if self._on_transition:
            self._on_transition(prescription, old_status, target)

        return prescription

    def mark_paid(self, prescription: Prescription) -> Prescription:
        """Payment for the first dispensation was authorised."""
        return self._transition(prescription, PrescriptionStatus.PENDING_SIGNATURE)

    def mark_signed(self, prescription: Prescription) -> Prescription:
        """The prescriber's signature was captured."""
        return self._transition(prescription, PrescriptionStatus.ACTIVE)

    def complete(self, prescription: Prescription, on: date | None = None) -> Prescription:
        """
        The schedule is exhausted.

        Sets end_date to ``on`` (today by default) unless one was authored.
        """
        prescription = self._transition(prescription, PrescriptionStatus.COMPLETED)
        if prescription.end_date is None:
            prescription.end_date = on or date.today()
        return prescription

    def cancel(self, prescription: Prescription) -> Prescription:
        return self._transition(prescription, PrescriptionStatus.CANCELLED)

    def replace(self, prescription: Prescription, replacement_id: str) -> Prescription:
        """
        Supersede the prescription.

        Only the old side of the link is set here; the caller sets
        ``replaces`` on the replacement and saves both records together.
        """
        prescription = self._transition(prescription, PrescriptionStatus.REPLACED)
        prescription.replaced_by = replacement_id
        return prescription
