"""
SQLite Fulfillment Storage Backend.

Lightweight embedded storage for prescriptions, subscriptions and the
fulfillment ledger. The ledger's primary key on ``external_event_id`` is the
final arbiter of exactly-once dispensation; the refill counter is moved with
a compare-and-set inside the same transaction.

Usage:
    >>> from titrate.storage.backends.sqlite import SQLiteFulfillmentStorage
    >>>
    >>> storage = SQLiteFulfillmentStorage("./data/titrate.db")
    >>> async with storage:
    ...     await storage.save_prescription(prescription)
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from collections.abc import Iterable

import aiosqlite

from titrate.core.exceptions import DuplicateEventError
from titrate.core.logger import get_logger
from titrate.storage.errors import StaleRecordError, StorageError
from titrate.storage.health import HealthCheckResult, HealthStatus
from titrate.storage.interfaces import FulfillmentStorage
from titrate.storage.serialization import (
    deserialize_schedule,
    parse_date,
    parse_datetime,
    serialize_schedule,
    to_iso,
)
from titrate.types import (
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    Subscription,
    SubscriptionStatus,
)

logger = get_logger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS prescriptions (
        id TEXT PRIMARY KEY,
        patient_id TEXT NOT NULL,
        prescriber_id TEXT NOT NULL,
        dose_schedule TEXT NOT NULL,
        refills_remaining INTEGER NOT NULL CHECK (refills_remaining >= 0),
        status TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT,
        replaces TEXT,
        replaced_by TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_prescriptions_status ON prescriptions(status);

    CREATE TABLE IF NOT EXISTS subscriptions (
        id TEXT PRIMARY KEY,
        prescription_id TEXT NOT NULL,
        patient_id TEXT NOT NULL,
        external_customer_ref TEXT NOT NULL,
        external_subscription_ref TEXT,
        status TEXT NOT NULL,
        next_charge_date TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_subscriptions_prescription
        ON subscriptions(prescription_id);

    CREATE TABLE IF NOT EXISTS fulfillment_ledger (
        external_event_id TEXT PRIMARY KEY,
        prescription_id TEXT NOT NULL,
        stage_index_dispensed INTEGER NOT NULL,
        order_ref TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_ledger_prescription
        ON fulfillment_ledger(prescription_id);
"""

_UPSERT_PRESCRIPTION = """
    INSERT INTO prescriptions (
        id, patient_id, prescriber_id, dose_schedule, refills_remaining, status,
        start_date, end_date, replaces, replaced_by, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        refills_remaining = excluded.refills_remaining,
        status = excluded.status,
        end_date = excluded.end_date,
        replaces = excluded.replaces,
        replaced_by = excluded.replaced_by
"""


class SQLiteFulfillmentStorage(FulfillmentStorage):
    """
    SQLite-based fulfillment storage.

    A single connection is shared and guarded by an asyncio lock. Writes run
    inside ``BEGIN IMMEDIATE`` transactions, and reads wait for them, so a
    read never sees a ledger row that may still roll back.

    Attributes:
        db_path: Path to SQLite database file (or ":memory:" for in-memory)
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._conn_lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self._get_connection()

    async def _get_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            # Autocommit mode; transactions are opened explicitly.
            self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row

        if not self._initialized:
            await self._conn.executescript(_SCHEMA)
            self._initialized = True

        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._initialized = False

    # ==========================================================================
    # Prescriptions
    # ==========================================================================

    @staticmethod
    def _prescription_params(p: Prescription) -> tuple:
        return (
            p.id,
            p.patient_id,
            p.prescriber_id,
            serialize_schedule(p.dose_schedule),
            p.refills_remaining,
            p.status.value,
            to_iso(p.start_date),
            to_iso(p.end_date),
            p.replaces,
            p.replaced_by,
            to_iso(p.created_at),
        )

    @staticmethod
    def _row_to_prescription(row: aiosqlite.Row) -> Prescription:
        return Prescription(
            id=row["id"],
            patient_id=row["patient_id"],
            prescriber_id=row["prescriber_id"],
            dose_schedule=deserialize_schedule(row["dose_schedule"]),
            refills_remaining=row["refills_remaining"],
            status=PrescriptionStatus(row["status"]),
            start_date=parse_date(row["start_date"]),
            end_date=parse_date(row["end_date"]),
            replaces=row["replaces"],
            replaced_by=row["replaced_by"],
            created_at=parse_datetime(row["created_at"]),
        )

    async def get_prescription(self, prescription_id: str) -> Prescription | None:
        row = await self._fetchone("SELECT * FROM prescriptions WHERE id = ?", (prescription_id,))
        return self._row_to_prescription(row) if row else None

    async def save_prescription(self, prescription: Prescription) -> None:
        await self.save_prescriptions([prescription])

    async def save_prescriptions(self, prescriptions: Iterable[Prescription]) -> None:
        params = [self._prescription_params(p) for p in prescriptions]
        async with self._transaction() as conn:
            await conn.executemany(_UPSERT_PRESCRIPTION, params)

    async def list_prescriptions(
        self, status: PrescriptionStatus | None = None
    ) -> list[Prescription]:
        if status is None:
            rows = await self._fetchall("SELECT * FROM prescriptions ORDER BY created_at")
        else:
            rows = await self._fetchall(
                "SELECT * FROM prescriptions WHERE status = ? ORDER BY created_at",
                (status.value,),
            )
        return [self._row_to_prescription(row) for row in rows]

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    @staticmethod
    def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            prescription_id=row["prescription_id"],
            patient_id=row["patient_id"],
            external_customer_ref=row["external_customer_ref"],
            external_subscription_ref=row["external_subscription_ref"],
            status=SubscriptionStatus(row["status"]),
            next_charge_date=parse_date(row["next_charge_date"]),
        )

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        row = await self._fetchone("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        return self._row_to_subscription(row) if row else None

    async def find_open_subscription(self, prescription_id: str) -> Subscription | None:
        row = await self._fetchone(
            "SELECT * FROM subscriptions WHERE prescription_id = ? AND status != ? LIMIT 1",
            (prescription_id, SubscriptionStatus.CANCELLED.value),
        )
        return self._row_to_subscription(row) if row else None

    async def save_subscription(self, subscription: Subscription) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO subscriptions (
                    id, prescription_id, patient_id, external_customer_ref,
                    external_subscription_ref, status, next_charge_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    external_subscription_ref = excluded.external_subscription_ref,
                    status = excluded.status,
                    next_charge_date = excluded.next_charge_date
                """,
                (
                    subscription.id,
                    subscription.prescription_id,
                    subscription.patient_id,
                    subscription.external_customer_ref,
                    subscription.external_subscription_ref,
                    subscription.status.value,
                    to_iso(subscription.next_charge_date),
                ),
            )

    async def list_subscriptions(
        self, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        if status is None:
            rows = await self._fetchall("SELECT * FROM subscriptions")
        else:
            rows = await self._fetchall(
                "SELECT * FROM subscriptions WHERE status = ?", (status.value,)
            )
        return [self._row_to_subscription(row) for row in rows]

    # ==========================================================================
    # Fulfillment ledger
    # ==========================================================================

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> FulfillmentLedgerEntry:
        return FulfillmentLedgerEntry(
            external_event_id=row["external_event_id"],
            prescription_id=row["prescription_id"],
            stage_index_dispensed=row["stage_index_dispensed"],
            order_ref=row["order_ref"],
            created_at=parse_datetime(row["created_at"]),
        )

    async def get_ledger_entry(self, external_event_id: str) -> FulfillmentLedgerEntry | None:
        row = await self._fetchone(
            "SELECT * FROM fulfillment_ledger WHERE external_event_id = ?",
            (external_event_id,),
        )
        return self._row_to_entry(row) if row else None

    async def list_ledger_entries(self, prescription_id: str) -> list[FulfillmentLedgerEntry]:
        rows = await self._fetchall(
            "SELECT * FROM fulfillment_ledger WHERE prescription_id = ? ORDER BY created_at",
            (prescription_id,),
        )
        return [self._row_to_entry(row) for row in rows]

    async def commit_dispensation(
        self,
        entry: FulfillmentLedgerEntry,
        prescription: Prescription,
        expected_refills: int,
    ) -> None:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO fulfillment_ledger (
                    external_event_id, prescription_id, stage_index_dispensed,
                    order_ref, created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.external_event_id,
                    entry.prescription_id,
                    entry.stage_index_dispensed,
                    entry.order_ref,
                    to_iso(entry.created_at),
                ),
            )
            if cursor.rowcount == 0:
                raise DuplicateEventError(entry.external_event_id)

            cursor = await conn.execute(
                """
                UPDATE prescriptions
                SET refills_remaining = ?, status = ?, end_date = ?
                WHERE id = ? AND refills_remaining = ?
                """,
                (
                    prescription.refills_remaining,
                    prescription.status.value,
                    to_iso(prescription.end_date),
                    prescription.id,
                    expected_refills,
                ),
            )
            if cursor.rowcount == 0:
                raise StaleRecordError(prescription.id, expected_refills)

    # ==========================================================================
    # Transactions & health
    # ==========================================================================

    def _transaction(self):
        return _SQLiteTransaction(self)

    async def _fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        async with self._conn_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(sql, params)
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._conn_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())

    async def health_check(self) -> HealthCheckResult:
        start = time.perf_counter()
        try:
            row = await self._fetchone("SELECT COUNT(*) FROM fulfillment_ledger")
            return HealthCheckResult(
                status=HealthStatus.HEALTHY,
                latency_ms=(time.perf_counter() - start) * 1000,
                message="SQLite storage is operational",
                details={"backend": "sqlite", "db_path": self.db_path, "ledger_entries": row[0]},
            )
        except (sqlite3.Error, OSError) as e:
            return HealthCheckResult(
                status=HealthStatus.UNHEALTHY,
                latency_ms=(time.perf_counter() - start) * 1000,
                message=f"SQLite storage error: {e}",
                details={"backend": "sqlite", "db_path": self.db_path},
            )


class _SQLiteTransaction:
    """Serialized BEGIN IMMEDIATE / COMMIT block; rolls back on any error."""

    def __init__(self, storage: SQLiteFulfillmentStorage):
        self._storage = storage

    async def __aenter__(self) -> aiosqlite.Connection:
        await self._storage._conn_lock.acquire()
        try:
            conn = await self._storage._get_connection()
            await conn.execute("BEGIN IMMEDIATE")
        except BaseException:
            self._storage._conn_lock.release()
            raise
        self._conn = conn
        return conn

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                await self._conn.execute("COMMIT")
            else:
                await self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"SQLite transaction finalization failed: {e}")
            if exc_type is None:
                raise StorageError("Failed to commit transaction", {"error": str(e)}) from e
        finally:
            self._storage._conn_lock.release()
        return False
