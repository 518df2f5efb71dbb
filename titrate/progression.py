"""
Dose progression arithmetic.

Maps a prescription's refill counter onto a position in its dose schedule.
Refills count down from the end of the schedule, so the number of stages
already consumed is ``max_stage - refills_remaining + 1``. The schedule
itself is never read for position; only the counter moves.

Every function here is pure: no storage, no clock, no collaborators. A
missing stage is always reported as ``None`` and callers treat it as the
end of titration.

Example:
    >>> current_stage_index(refills_remaining=2, max_stage=2)
    1
    >>> current_stage_index(refills_remaining=0, max_stage=2) is None
    True
"""

from __future__ import annotations

from titrate.core.logger import get_logger
from titrate.types import DoseSchedule, DoseStage

logger = get_logger(__name__)

INITIAL_STAGE_INDEX = 0


def _consumed(refills_remaining: int, max_stage: int) -> int:
    return max_stage - refills_remaining + 1


def violates_schedule_depth(refills_remaining: int, max_stage: int | None) -> bool:
    """
    Check whether the refill counter points before the start of the schedule.

    That can only happen when refills were authored larger than the schedule
    is deep, which is data corruption rather than a recoverable state.
    """
    if max_stage is None or max_stage < 0:
        return False
    return _consumed(refills_remaining, max_stage) < 0


def current_stage_index(refills_remaining: int, max_stage: int | None) -> int | None:
    """
    Stage due for a renewal given the refills left.

    Args:
        refills_remaining: Refill counter as stored on the prescription
        max_stage: Highest index in the schedule (None for an empty schedule)

    Returns:
        The stage index, or None when the schedule is exhausted, empty,
        or the counter exceeds the schedule depth
    """
    if max_stage is None or max_stage < 0:
        return None

    consumed = _consumed(refills_remaining, max_stage)
    if consumed < 0:
        logger.warning(
            f"Schedule invariant violated: {refills_remaining} refills remaining "
            f"exceed schedule depth (max stage {max_stage})"
        )
        return None
    if consumed > max_stage:
        return None
    return consumed


def initial_stage_index() -> int:
    """The first dispensation always starts the schedule."""
    return INITIAL_STAGE_INDEX


def next_stage_index(refills_remaining: int, max_stage: int | None) -> int | None:
    """Stage following the current one, or None at the end of the schedule."""
    current = current_stage_index(refills_remaining, max_stage)
    if current is None:
        return None
    following = current + 1
    return following if following <= max_stage else None


def should_advance(refills_remaining: int, max_stage: int | None) -> bool:
    return next_stage_index(refills_remaining, max_stage) is not None


# ============================================
# SCHEDULE LOOKUPS
# ============================================


def max_stage_of(schedule: DoseSchedule | None) -> int | None:
    """Highest stage index of a schedule, None when empty or absent."""
    if not schedule:
        return None
    return schedule.max_stage


def stage_at(schedule: DoseSchedule | None, index: int | None) -> DoseStage | None:
    """Look up a stage by index. Out-of-range and empty lookups return None."""
    if not schedule or index is None or index < 0:
        return None
    stages = schedule.stages
    if index >= len(stages):
        return None
    return stages[index]


def resolve_stage(
    schedule: DoseSchedule | None,
    refills_remaining: int,
    is_initial_order: bool = False,
) -> DoseStage | None:
    """
    Stage to dispense for an order.

    Initial orders always get the first stage, regardless of refills.
    """
    if is_initial_order:
        return stage_at(schedule, initial_stage_index())
    return stage_at(schedule, current_stage_index(refills_remaining, max_stage_of(schedule)))
