"""
Tests for the titrate command line.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

import pytest
from click.testing import CliRunner

from fakes import build_schedule
from titrate.cli.app import cli
from titrate.fulfillment.collaborators import InMemoryOrderGateway
from titrate.fulfillment.processor import RecurringFulfillmentProcessor
from titrate.storage.backends.sqlite import SQLiteFulfillmentStorage
from titrate.types import (
    BillingEvent,
    BillingEventType,
    Prescription,
    PrescriptionStatus,
    Subscription,
)


@pytest.fixture(autouse=True)
def _restore_titrate_logger():
    logger = logging.getLogger("titrate")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "titrate.db")


def _invoke(runner, *args):
    return runner.invoke(cli, list(args), obj={})


async def _seed_renewed_prescription(db_path):
    """Active 3-stage prescription that has dispensed one renewal."""
    async with SQLiteFulfillmentStorage(db_path) as storage:
        prescription = Prescription(
            "patient-1", "prescriber-1", build_schedule(3), 2, status=PrescriptionStatus.ACTIVE
        )
        await storage.save_prescription(prescription)
        await storage.save_subscription(
            Subscription(prescription.id, "patient-1", "cust_1", external_subscription_ref="sub_1")
        )
        processor = RecurringFulfillmentProcessor(storage, InMemoryOrderGateway())
        await processor.process_billing_event(
            BillingEvent("inv_1", prescription.id, BillingEventType.RENEWAL)
        )
        return prescription.id


async def _seed_abandoned_checkout(db_path):
    async with SQLiteFulfillmentStorage(db_path) as storage:
        prescription = Prescription(
            "patient-2",
            "prescriber-1",
            build_schedule(3),
            2,
            created_at=datetime.now(UTC) - timedelta(days=60),
        )
        await storage.save_prescription(prescription)
        return prescription.id


async def _status_of(db_path, prescription_id):
    async with SQLiteFulfillmentStorage(db_path) as storage:
        return (await storage.get_prescription(prescription_id)).status


class TestStageCommand:
    def test_renewal_preview(self, runner):
        result = _invoke(runner, "stage", "-n", "3", "-r", "2")

        assert result.exit_code == 0
        assert "stage due" in result.output
        assert "renewal" in result.output

    def test_initial_preview(self, runner):
        result = _invoke(runner, "stage", "-n", "3", "-r", "2", "--initial")

        assert result.exit_code == 0
        assert "initial" in result.output
        assert "should advance" not in result.output

    def test_depth_violation_exits_2(self, runner):
        result = _invoke(runner, "stage", "-n", "3", "-r", "5")

        assert result.exit_code == 2
        assert "halted" in result.output

    def test_negative_refills_rejected(self, runner):
        result = _invoke(runner, "stage", "-n", "3", "-r", "-1")
        assert result.exit_code == 2


class TestShowAndLedger:
    def test_show_missing_prescription(self, runner):
        result = _invoke(runner, "--storage", "memory://", "show", "rx-missing")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show_prescription(self, runner, db_path):
        prescription_id = asyncio.run(_seed_renewed_prescription(db_path))

        result = _invoke(runner, "--storage", f"sqlite:///{db_path}", "show", prescription_id)

        assert result.exit_code == 0, result.output
        assert "patient-1" in result.output
        assert "7.5mg" in result.output
        assert "active" in result.output

    def test_ledger_lists_entries(self, runner, db_path):
        prescription_id = asyncio.run(_seed_renewed_prescription(db_path))

        result = _invoke(runner, "--storage", f"sqlite:///{db_path}", "ledger", prescription_id)

        assert result.exit_code == 0, result.output
        assert "inv_1" in result.output

    def test_empty_ledger(self, runner):
        result = _invoke(runner, "--storage", "memory://", "ledger", "rx-none")

        assert result.exit_code == 0
        assert "No ledger entries" in result.output

    def test_unknown_storage_scheme(self, runner):
        result = _invoke(runner, "--storage", "redis://localhost", "show", "rx-1")
        assert result.exit_code == 2


class TestSweepCommand:
    def test_cancels_abandoned_checkout(self, runner, db_path):
        prescription_id = asyncio.run(_seed_abandoned_checkout(db_path))

        result = _invoke(runner, "--storage", f"sqlite:///{db_path}", "sweep", "--ttl-days", "30")

        assert result.exit_code == 0, result.output
        assert "overdue_pending_payments" in result.output
        assert asyncio.run(_status_of(db_path, prescription_id)) == PrescriptionStatus.CANCELLED

    def test_ttl_must_be_positive(self, runner):
        result = _invoke(runner, "sweep", "--ttl-days", "0")
        assert result.exit_code == 2


class TestHealthCommand:
    def test_memory_is_healthy(self, runner):
        result = _invoke(runner, "--storage", "memory://", "health")

        assert result.exit_code == 0
        assert "healthy" in result.output

    def test_sqlite_is_healthy(self, runner, db_path):
        result = _invoke(runner, "--storage", f"sqlite:///{db_path}", "health")
        assert result.exit_code == 0, result.output
