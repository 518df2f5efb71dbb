"""
Tests for dose progression arithmetic.
"""

import logging

import pytest

from titrate.progression import (
    INITIAL_STAGE_INDEX,
    current_stage_index,
    initial_stage_index,
    max_stage_of,
    next_stage_index,
    resolve_stage,
    should_advance,
    stage_at,
    violates_schedule_depth,
)
from titrate.types import DoseSchedule


class TestCurrentStageIndex:
    """Refill counter → stage for a 3-stage schedule (max stage 2)."""

    @pytest.mark.parametrize(
        ("refills", "expected"),
        [(2, 1), (1, 2), (0, None)],
    )
    def test_three_stage_schedule(self, refills, expected):
        assert current_stage_index(refills, max_stage=2) == expected

    def test_full_refills_point_at_first_renewal_stage(self):
        # N-1 refills authored for N stages: stage 0 went out with the initial order
        assert current_stage_index(refills_remaining=4, max_stage=4) == 1

    def test_refills_exceeding_depth_return_none(self, caplog):
        with caplog.at_level(logging.WARNING, logger="titrate.progression"):
            assert current_stage_index(refills_remaining=5, max_stage=2) is None
        assert "invariant" in caplog.text

    def test_refills_one_past_depth_map_to_stage_zero(self):
        assert current_stage_index(refills_remaining=3, max_stage=2) == 0

    def test_empty_schedule(self):
        assert current_stage_index(0, None) is None
        assert current_stage_index(3, None) is None

    def test_single_stage_schedule(self):
        assert current_stage_index(1, max_stage=0) == 0
        assert current_stage_index(0, max_stage=0) is None


class TestNextStage:
    def test_next_stage_follows_current(self):
        assert next_stage_index(2, max_stage=2) == 2

    def test_no_next_stage_on_last(self):
        assert next_stage_index(1, max_stage=2) is None

    def test_no_next_stage_when_exhausted(self):
        assert next_stage_index(0, max_stage=2) is None

    def test_should_advance(self):
        assert should_advance(2, max_stage=2) is True
        assert should_advance(1, max_stage=2) is False
        assert should_advance(0, max_stage=2) is False
        assert should_advance(0, None) is False


class TestInitialStage:
    @pytest.mark.parametrize("refills", [2, 1, 0])
    def test_initial_order_always_stage_zero(self, schedule, refills):
        stage = resolve_stage(schedule, refills, is_initial_order=True)
        assert stage is not None
        assert stage.stage_index == 0

    def test_initial_stage_index_constant(self):
        assert initial_stage_index() == INITIAL_STAGE_INDEX == 0

    def test_initial_order_on_empty_schedule(self):
        assert resolve_stage(DoseSchedule(), 0, is_initial_order=True) is None


class TestScheduleLookups:
    def test_max_stage_of(self, schedule):
        assert max_stage_of(schedule) == 2
        assert max_stage_of(DoseSchedule()) is None
        assert max_stage_of(None) is None

    def test_stage_at(self, schedule):
        assert stage_at(schedule, 1).dose_label == "5mg"

    @pytest.mark.parametrize("index", [-1, 3, 100, None])
    def test_stage_at_out_of_range(self, schedule, index):
        assert stage_at(schedule, index) is None

    def test_stage_at_empty_or_absent(self):
        assert stage_at(DoseSchedule(), 0) is None
        assert stage_at(None, 0) is None

    def test_resolve_stage_renewal(self, schedule):
        assert resolve_stage(schedule, 2).dose_label == "5mg"
        assert resolve_stage(schedule, 1).dose_label == "7.5mg"
        assert resolve_stage(schedule, 0) is None

    def test_resolve_stage_empty_schedule_never_raises(self):
        assert resolve_stage(DoseSchedule(), 5) is None
        assert resolve_stage(None, 0) is None


class TestScheduleDepth:
    def test_within_depth(self):
        assert violates_schedule_depth(2, 2) is False
        assert violates_schedule_depth(3, 2) is False

    def test_beyond_depth(self):
        assert violates_schedule_depth(4, 2) is True

    def test_empty_schedule_never_violates(self):
        assert violates_schedule_depth(10, None) is False
