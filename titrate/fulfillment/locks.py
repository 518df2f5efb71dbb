"""
Per-prescription locking.

Renewals, cancellations and replacements for the same prescription must
never interleave. Each prescription id maps to one asyncio.Lock, created on
demand and dropped once nobody holds or waits for it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class PrescriptionLockRegistry:
    """
    Registry of exclusive, prescription-scoped locks.

    Only serializes work within one event loop. Across processes the
    storage commit (unique ledger key plus refill compare-and-set) is what
    keeps dispensation exactly-once.

    Usage:
        >>> locks = PrescriptionLockRegistry()
        >>> async with locks.hold("rx-123"):
        ...     ...  # read, call collaborators, commit
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, prescription_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(prescription_id)
        if lock is None:
            lock = self._locks[prescription_id] = asyncio.Lock()
        self._users[prescription_id] = self._users.get(prescription_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._users[prescription_id] -= 1
            if self._users[prescription_id] == 0:
                del self._users[prescription_id]
                del self._locks[prescription_id]

    def is_locked(self, prescription_id: str) -> bool:
        lock = self._locks.get(prescription_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
