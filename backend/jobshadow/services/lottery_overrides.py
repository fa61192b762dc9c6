from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

MANUAL_RANK = -1


class ManualOutcome(str, Enum):
    applied = "applied"
    skipped_no_capacity = "skipped_no_capacity"
    skipped_unknown_position = "skipped_unknown_position"
    skipped_excluded_student = "skipped_excluded_student"


@dataclass(frozen=True)
class PositionSlots:
    position_id: str
    slots: int
    company_id: str | None = None


@dataclass(frozen=True)
class ManualPlacement:
    student_id: str
    position_id: str


@dataclass(frozen=True)
class PrefillReservation:
    company_id: str
    percentage: int


@dataclass(frozen=True)
class ManualPlacementResult:
    student_id: str
    position_id: str
    outcome: ManualOutcome


@dataclass(frozen=True)
class Placement:
    position_id: str | None = None
    rank: int | None = None


UNASSIGNED = Placement()


@dataclass
class OverrideResolution:
    """Capacity and placements left over for the stochastic phase."""

    capacities: dict[str, int]
    manual_placements: dict[str, Placement] = field(default_factory=dict)
    manual_results: list[ManualPlacementResult] = field(default_factory=list)
    withheld: dict[str, int] = field(default_factory=dict)

    def fresh_capacities(self) -> dict[str, int]:
        return dict(self.capacities)

    def fresh_placements(self) -> dict[str, Placement]:
        return dict(self.manual_placements)


def prefill_withholding(slots: int, percentage: int) -> int:
    if slots <= 0 or percentage <= 0:
        return 0
    return min(slots, math.floor(slots * percentage / 100))


def resolve_overrides(
    positions: list[PositionSlots],
    manual_placements: list[ManualPlacement],
    prefill_reservations: list[PrefillReservation],
    roster: set[str] | None = None,
) -> OverrideResolution:
    """Withhold prefill seats from nominal slots, then let manual placements consume what remains.

    Manual placements are applied in the order given. When the same student
    appears more than once only the last placement is considered. A placement
    whose position has no remaining seat, or whose student is not in
    ``roster`` when one is given, is dropped and reported as skipped.
    """
    capacities = {position.position_id: max(0, position.slots) for position in positions}

    percentages: dict[str, int] = {}
    for reservation in prefill_reservations:
        percentages[reservation.company_id] = reservation.percentage

    withheld: dict[str, int] = {}
    for position in positions:
        if position.company_id is None or position.company_id not in percentages:
            continue
        amount = prefill_withholding(position.slots, percentages[position.company_id])
        if amount <= 0:
            continue
        withheld[position.position_id] = amount
        capacities[position.position_id] = max(0, capacities[position.position_id] - amount)

    latest: dict[str, str] = {}
    for placement in manual_placements:
        latest[placement.student_id] = placement.position_id

    resolution = OverrideResolution(capacities=capacities, withheld=withheld)
    for student_id, position_id in latest.items():
        if roster is not None and student_id not in roster:
            outcome = ManualOutcome.skipped_excluded_student
        elif position_id not in capacities:
            outcome = ManualOutcome.skipped_unknown_position
        elif capacities[position_id] < 1:
            outcome = ManualOutcome.skipped_no_capacity
        else:
            capacities[position_id] -= 1
            resolution.manual_placements[student_id] = Placement(position_id=position_id, rank=MANUAL_RANK)
            outcome = ManualOutcome.applied
        if outcome is not ManualOutcome.applied:
            logger.warning(
                "LOTTERY MANUAL ASSIGNMENT SKIPPED | student_id=%s | position_id=%s | reason=%s",
                student_id,
                position_id,
                outcome.value,
            )
        resolution.manual_results.append(
            ManualPlacementResult(student_id=student_id, position_id=position_id, outcome=outcome)
        )
    return resolution
