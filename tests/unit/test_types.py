"""
Tests for dose schedules and record types.
"""

import pytest

from titrate.core.exceptions import ScheduleDefinitionError
from titrate.types import (
    BillingEvent,
    BillingEventType,
    DoseSchedule,
    DoseStage,
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    RenewalOutcome,
    RenewalResult,
)


class TestDoseSchedule:
    def test_from_labels_assigns_indices(self, schedule):
        assert [s.stage_index for s in schedule] == [0, 1, 2]
        assert schedule.max_stage == 2
        assert len(schedule) == 3

    def test_gap_is_rejected(self):
        with pytest.raises(ScheduleDefinitionError):
            DoseSchedule([DoseStage(0, "2.5mg", "v0", "p0"), DoseStage(2, "5mg", "v2", "p2")])

    def test_must_start_at_zero(self):
        with pytest.raises(ScheduleDefinitionError):
            DoseSchedule([DoseStage(1, "5mg", "v1", "p1")])

    def test_definition_error_is_value_error(self):
        with pytest.raises(ValueError):
            DoseSchedule([DoseStage(3, "5mg", "v", "p")])

    def test_empty_schedule(self):
        empty = DoseSchedule()
        assert not empty
        assert empty.max_stage is None
        assert list(empty) == []

    def test_list_round_trip(self, schedule):
        assert DoseSchedule.from_list(schedule.to_list()) == schedule

    def test_from_list_none(self):
        assert DoseSchedule.from_list(None) == DoseSchedule()

    def test_hashable_and_repr(self, schedule):
        assert hash(schedule) == hash(DoseSchedule(schedule.stages))
        assert repr(schedule) == "DoseSchedule([2.5mg, 5mg, 7.5mg])"


class TestPrescription:
    def test_defaults(self, schedule):
        prescription = Prescription("patient-1", "doc-1", schedule, refills_remaining=2)
        assert prescription.status == PrescriptionStatus.PENDING_PAYMENT
        assert prescription.id
        assert prescription.created_at.tzinfo is not None
        assert not prescription.is_terminal

    def test_negative_refills_rejected(self, schedule):
        with pytest.raises(ValueError):
            Prescription("patient-1", "doc-1", schedule, refills_remaining=-1)

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (PrescriptionStatus.PENDING_PAYMENT, False),
            (PrescriptionStatus.PENDING_SIGNATURE, False),
            (PrescriptionStatus.ACTIVE, False),
            (PrescriptionStatus.COMPLETED, True),
            (PrescriptionStatus.CANCELLED, True),
            (PrescriptionStatus.REPLACED, True),
        ],
    )
    def test_terminal_statuses(self, status, terminal):
        assert status.is_terminal is terminal

    def test_to_dict(self, schedule):
        data = Prescription("patient-1", "doc-1", schedule, refills_remaining=2).to_dict()
        assert data["status"] == "pending_payment"
        assert data["dose_schedule"][0]["dose_label"] == "2.5mg"
        assert data["end_date"] is None


class TestEventTypes:
    def test_billing_event_from_dict(self):
        event = BillingEvent.from_dict(
            {"external_event_id": "inv_1", "prescription_id": "rx-1", "event_type": "renewal"}
        )
        assert event.event_type == BillingEventType.RENEWAL

    def test_unknown_event_type(self):
        with pytest.raises(ValueError):
            BillingEvent.from_dict(
                {"external_event_id": "inv_1", "prescription_id": "rx-1", "event_type": "refund"}
            )

    def test_result_from_ledger_is_duplicate(self):
        entry = FulfillmentLedgerEntry("inv_1", "rx-1", stage_index_dispensed=1, order_ref="o-1")
        result = RenewalResult.from_ledger(entry)
        assert result.outcome == RenewalOutcome.DUPLICATE
        assert result.stage_index == 1
        assert result.order_ref == "o-1"
        assert not result.dispensed
