"""
Unified error hierarchy for storage operations.

All storage-related exceptions inherit from StorageError, so callers can
catch backend failures without knowing which backend is configured.
"""

from typing import Any


class StorageError(Exception):
    """Base exception for all storage operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class StaleRecordError(StorageError):
    """
    A compare-and-set on a prescription lost against a concurrent writer.

    Raised when the refill counter in storage no longer matches the value
    the writer read. Nothing is committed.
    """

    def __init__(self, prescription_id: str, expected: int, actual: int | None = None):
        super().__init__(
            f"Prescription {prescription_id} changed concurrently",
            details={"expected_refills": expected, "actual_refills": actual},
        )
        self.prescription_id = prescription_id
        self.expected = expected
        self.actual = actual


class SerializationError(StorageError):
    """Failed to serialize or deserialize a stored column."""

    def __init__(
        self,
        message: str = "Serialization failed",
        operation: str | None = None,
        data_type: str | None = None,
    ):
        super().__init__(message, details={"operation": operation, "data_type": data_type})
        self.operation = operation
        self.data_type = data_type
