# ============================================
# FILE: titrate/core/exceptions.py
# ============================================

"""
All fulfillment-related exceptions

Only ExternalFulfillmentError is retryable: nothing was committed, so the
billing event can be redelivered and will reprocess identically.
"""

from __future__ import annotations


class TitrateError(Exception):
    """Base fulfillment error"""

    retryable = False


class ScheduleDefinitionError(TitrateError, ValueError):
    """Dose schedule is not a gapless zero-based sequence"""


class NotFoundError(TitrateError):
    """Referenced prescription or subscription does not exist"""

    def __init__(self, item_type: str, item_id: str):
        self.item_type = item_type
        self.item_id = item_id
        super().__init__(f"{item_type} not found: {item_id}")


class InvalidStateError(TitrateError):
    """
    Raised when a record is asked to do something its status forbids.

    Covers illegal lifecycle transitions and renewals arriving for a
    prescription that is already terminal.
    """

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        from_status: str | None = None,
        to_status: str | None = None,
    ):
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)


class ScheduleInvariantViolation(TitrateError):
    """
    Refills remaining exceed the depth of the dose schedule.

    Treated as data corruption: the prescription is not processed until
    someone repairs the record.
    """

    def __init__(self, prescription_id: str, refills_remaining: int, max_stage: int):
        self.prescription_id = prescription_id
        self.refills_remaining = refills_remaining
        self.max_stage = max_stage
        super().__init__(
            f"Prescription {prescription_id} has {refills_remaining} refills remaining "
            f"but its schedule only reaches stage {max_stage}; manual review required"
        )


class ExternalFulfillmentError(TitrateError):
    """Catalog or order collaborator failed or timed out"""

    retryable = True

    def __init__(self, message: str, collaborator: str, reason: str | None = None):
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(message)


class DuplicateEventError(TitrateError):
    """
    The ledger already holds this billing event.

    Never surfaced to callers: the processor turns it into the
    duplicate no-op result.
    """

    def __init__(self, external_event_id: str):
        self.external_event_id = external_event_id
        super().__init__(f"Billing event already processed: {external_event_id}")
