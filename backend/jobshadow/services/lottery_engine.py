from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import perf_counter

from jobshadow.models.lottery import GradeOrder
from jobshadow.services.lottery_overrides import MANUAL_RANK, UNASSIGNED, OverrideResolution, Placement

logger = logging.getLogger(__name__)

DEFAULT_TRIAL_COUNT = 5000
DEFAULT_PROGRESS_INTERVAL = 100
DEFAULT_MAX_RANK = 10

ProgressCallback = Callable[[int, float], Awaitable[None]]


@dataclass(frozen=True)
class Choice:
    position_id: str
    rank: int


@dataclass(frozen=True)
class StudentPreferences:
    student_id: str
    grade: int | None
    choices: tuple[Choice, ...] = ()


@dataclass
class TrialResult:
    seed: int
    assignments: dict[str, Placement]
    cost: int


@dataclass
class BestResult:
    """Lowest-cost trial seen so far. Equal cost keeps the earlier trial."""

    result: TrialResult | None = None
    trials_run: int = 0
    worst_cost: int | None = None

    @property
    def cost(self) -> int | None:
        return self.result.cost if self.result is not None else None

    def offer(self, candidate: TrialResult) -> bool:
        self.trials_run += 1
        if self.worst_cost is None or candidate.cost > self.worst_cost:
            self.worst_cost = candidate.cost
        if self.result is None or candidate.cost < self.result.cost:
            self.result = candidate
            return True
        return False


def _grade_sort_key(grade: int | None, *, descending: bool) -> tuple[int, int]:
    if grade is None:
        return (1, 0)
    return (0, -grade if descending else grade)


def order_students(
    students: list[StudentPreferences],
    grade_order: GradeOrder,
    rng: random.Random,
) -> list[StudentPreferences]:
    ordered = list(students)
    rng.shuffle(ordered)
    if grade_order is GradeOrder.ASCENDING:
        ordered.sort(key=lambda item: _grade_sort_key(item.grade, descending=False))
    elif grade_order is GradeOrder.DESCENDING:
        ordered.sort(key=lambda item: _grade_sort_key(item.grade, descending=True))
    return ordered


def run_trial(
    students: list[StudentPreferences],
    resolution: OverrideResolution,
    *,
    grade_order: GradeOrder,
    rng: random.Random,
    seed: int = 0,
    max_rank: int = DEFAULT_MAX_RANK,
) -> TrialResult:
    """Greedy tiered assignment over one randomized student order.

    Tier by tier, each still-unplaced student takes the choice ranked at that
    tier if it has a free seat. Ranks at or beyond ``max_rank`` are never
    honored. Cost is the sum of granted ranks; manual placements are free.
    """
    capacities = resolution.fresh_capacities()
    assignments: dict[str, Placement] = {student.student_id: UNASSIGNED for student in students}
    assignments.update(resolution.fresh_placements())

    ordered = order_students(students, grade_order, rng)
    cost = 0
    for tier in range(max_rank):
        for student in ordered:
            if assignments[student.student_id].position_id is not None:
                continue
            for choice in student.choices:
                if choice.rank != tier:
                    continue
                if capacities.get(choice.position_id, 0) > 0:
                    capacities[choice.position_id] -= 1
                    assignments[student.student_id] = Placement(position_id=choice.position_id, rank=choice.rank)
                    cost += choice.rank
                    break

    return TrialResult(seed=seed, assignments=assignments, cost=cost)


def trial_cost(assignments: dict[str, Placement]) -> int:
    return sum(
        placement.rank
        for placement in assignments.values()
        if placement.position_id is not None and placement.rank is not None and placement.rank != MANUAL_RANK
    )


@dataclass
class LotteryOptimizer:
    students: list[StudentPreferences]
    resolution: OverrideResolution
    grade_order: GradeOrder = GradeOrder.NONE
    trial_count: int = DEFAULT_TRIAL_COUNT
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    max_rank: int = DEFAULT_MAX_RANK
    random_seed: int | None = None
    yield_seconds: float = 0.01
    _random: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.trial_count < 1:
            raise ValueError("trial_count must be at least 1")
        if self.progress_interval < 1:
            raise ValueError("progress_interval must be at least 1")
        self._random = random.Random()

    def rng_for(self, seed: int) -> random.Random:
        # A configured base seed makes each trial reproducible from its index alone.
        if self.random_seed is None:
            return self._random
        return random.Random(self.random_seed * 1_000_003 + seed)

    def run_trial(self, seed: int) -> TrialResult:
        return run_trial(
            self.students,
            self.resolution,
            grade_order=self.grade_order,
            rng=self.rng_for(seed),
            seed=seed,
            max_rank=self.max_rank,
        )

    def progress_for(self, seed: int) -> float:
        return seed * 100 / self.trial_count

    async def run(self, on_progress: ProgressCallback | None = None) -> BestResult:
        started = perf_counter()
        best = BestResult()
        for seed in range(1, self.trial_count + 1):
            best.offer(self.run_trial(seed))
            if seed % self.progress_interval == 0:
                if on_progress is not None:
                    await on_progress(seed, self.progress_for(seed))
                await asyncio.sleep(self.yield_seconds)

        logger.info(
            "LOTTERY OPTIMIZATION COMPLETE | students=%s | trials=%s | best_cost=%s | best_seed=%s | worst_cost=%s | runtime_ms=%s",
            len(self.students),
            best.trials_run,
            best.cost,
            best.result.seed if best.result is not None else None,
            best.worst_cost,
            int((perf_counter() - started) * 1000),
        )
        return best
