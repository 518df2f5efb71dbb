"""
Storage layer for prescriptions, subscriptions and the fulfillment ledger.

Quick Start:
    >>> from titrate.storage import create_storage
    >>> storage = create_storage("sqlite:///./titrate.db")
"""

from titrate.storage.backends import InMemoryFulfillmentStorage, SQLiteFulfillmentStorage
from titrate.storage.errors import SerializationError, StaleRecordError, StorageError
from titrate.storage.factory import create_storage
from titrate.storage.health import HealthCheckResult, HealthStatus
from titrate.storage.interfaces import FulfillmentStorage

__all__ = [
    "FulfillmentStorage",
    "HealthCheckResult",
    "HealthStatus",
    "InMemoryFulfillmentStorage",
    "SQLiteFulfillmentStorage",
    "SerializationError",
    "StaleRecordError",
    "StorageError",
    "create_storage",
]
