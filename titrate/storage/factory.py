"""
Storage Factory - create a fulfillment storage backend from a URL.

Supported URLs:
    memory://                  In-memory (tests, development)
    sqlite:///path/to/file.db  SQLite file
    sqlite://:memory:          SQLite in-memory database
"""

from titrate.storage.backends.memory import InMemoryFulfillmentStorage
from titrate.storage.backends.sqlite import SQLiteFulfillmentStorage
from titrate.storage.interfaces import FulfillmentStorage


def create_storage(url: str = "memory://") -> FulfillmentStorage:
    """
    Create a storage backend from a connection URL.

    Args:
        url: Storage URL (see module docstring)

    Returns:
        An uninitialized storage instance

    Raises:
        ValueError: If the URL scheme is not supported

    Example:
        >>> storage = create_storage("sqlite:///./titrate.db")
        >>> await storage.initialize()
    """
    if url in ("", "memory://"):
        return InMemoryFulfillmentStorage()

    if url.startswith("sqlite://"):
        path = url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        if not path:
            msg = f"SQLite URL is missing a database path: {url}"
            raise ValueError(msg)
        return SQLiteFulfillmentStorage(path)

    msg = f"Unknown storage URL scheme: {url}"
    raise ValueError(msg)
