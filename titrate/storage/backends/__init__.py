"""
Storage backend implementations.
"""

from titrate.storage.backends.memory import InMemoryFulfillmentStorage
from titrate.storage.backends.sqlite import SQLiteFulfillmentStorage

__all__ = [
    "InMemoryFulfillmentStorage",
    "SQLiteFulfillmentStorage",
]
