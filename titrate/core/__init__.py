"""
Core module - configuration, environment, exceptions and logging.
"""

from titrate.core.exceptions import (
    DuplicateEventError,
    ExternalFulfillmentError,
    InvalidStateError,
    NotFoundError,
    ScheduleDefinitionError,
    ScheduleInvariantViolation,
    TitrateError,
)
from titrate.core.logger import get_logger, set_logger

__all__ = [
    "DuplicateEventError",
    "ExternalFulfillmentError",
    "InvalidStateError",
    "NotFoundError",
    "ScheduleDefinitionError",
    "ScheduleInvariantViolation",
    "TitrateError",
    "get_logger",
    "set_logger",
]
