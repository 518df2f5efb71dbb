"""
SQLite-specific storage tests: persistence, serialization and the factory.
"""

import asyncio

import pytest

from titrate.storage import (
    InMemoryFulfillmentStorage,
    SerializationError,
    SQLiteFulfillmentStorage,
    create_storage,
)
from titrate.storage.serialization import deserialize_schedule, serialize_schedule
from titrate.types import FulfillmentLedgerEntry, Prescription, PrescriptionStatus


class TestSQLitePersistence:
    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path, schedule):
        db_path = str(tmp_path / "titrate.db")
        prescription = Prescription(
            "patient-1", "doc-1", schedule, refills_remaining=2, status=PrescriptionStatus.ACTIVE
        )

        async with SQLiteFulfillmentStorage(db_path) as storage:
            await storage.save_prescription(prescription)
            prescription.refills_remaining = 1
            await storage.commit_dispensation(
                FulfillmentLedgerEntry("inv_1", prescription.id, 1, order_ref="order-1"),
                prescription,
                expected_refills=2,
            )

        async with SQLiteFulfillmentStorage(db_path) as storage:
            loaded = await storage.get_prescription(prescription.id)
            assert loaded.refills_remaining == 1
            assert loaded.dose_schedule == schedule
            assert (await storage.get_ledger_entry("inv_1")).order_ref == "order-1"

    @pytest.mark.asyncio
    async def test_health_reports_ledger_size(self, sqlite_storage):
        result = await sqlite_storage.health_check()
        assert result.details["ledger_entries"] == 0
        assert result.details["backend"] == "sqlite"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        storage = SQLiteFulfillmentStorage()
        await storage.initialize()
        await storage.close()
        await storage.close()

    @pytest.mark.asyncio
    async def test_reads_wait_for_open_transaction(self, sqlite_storage):
        with pytest.raises(RuntimeError):
            async with sqlite_storage._transaction() as conn:
                await conn.execute(
                    "INSERT INTO fulfillment_ledger (external_event_id, prescription_id, "
                    "stage_index_dispensed, order_ref, created_at) VALUES (?, ?, ?, ?, ?)",
                    ("inv_1", "rx-1", 1, "order-1", "2026-01-01T00:00:00+00:00"),
                )
                lookup = asyncio.create_task(sqlite_storage.get_ledger_entry("inv_1"))
                await asyncio.sleep(0.05)
                assert not lookup.done()
                raise RuntimeError("order commit aborted")

        assert await lookup is None
        assert await sqlite_storage.list_ledger_entries("rx-1") == []


class TestScheduleSerialization:
    def test_round_trip(self, schedule):
        assert deserialize_schedule(serialize_schedule(schedule)) == schedule

    def test_corrupt_schedule(self):
        with pytest.raises(SerializationError):
            deserialize_schedule('[{"stage_index": 0}]')


class TestStorageFactory:
    def test_memory(self):
        assert isinstance(create_storage("memory://"), InMemoryFulfillmentStorage)
        assert isinstance(create_storage(), InMemoryFulfillmentStorage)

    def test_sqlite_file(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path}/titrate.db")
        assert isinstance(storage, SQLiteFulfillmentStorage)
        assert storage.db_path == f"{tmp_path}/titrate.db"

    def test_sqlite_memory(self):
        storage = create_storage("sqlite://:memory:")
        assert storage.db_path == ":memory:"

    def test_sqlite_without_path(self):
        with pytest.raises(ValueError):
            create_storage("sqlite://")

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="Unknown storage URL"):
            create_storage("postgres://localhost/titrate")
