from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobshadow.models.lottery import LotteryJob, LotteryResult
from jobshadow.models.school import Event
from jobshadow.models.user import User
from jobshadow.services.lottery_roster import load_event_choices, load_event_positions, load_school_students

TRACKED_CHOICES = 10


@dataclass
class LotteryStats:
    total_students: int = 0
    choice_counts: list[int] = field(default_factory=lambda: [0] * TRACKED_CHOICES)
    not_placed: int = 0
    completed_at: datetime | None = None
    admin_email: str | None = None

    @property
    def placed(self) -> int:
        return sum(self.choice_counts)


def calculate_lottery_stats(db: Session, job: LotteryJob, event: Event) -> LotteryStats:
    """Count how many students landed on each of their first ten choices.

    A result whose position is not among the student's choices (a manual
    placement, typically) counts as not placed, the same as a student with
    choices who received nothing.
    """
    positions = load_event_positions(db, event.id)
    choices_by_student = load_event_choices(db, [position.id for position in positions])
    roster = {student.id for student in load_school_students(db, event.school_id)}
    students_with_choices = {student_id for student_id in choices_by_student if student_id in roster}

    results = list(
        db.execute(select(LotteryResult).where(LotteryResult.lottery_job_id == job.id)).scalars()
    )
    admin = db.get(User, job.admin_id)
    stats = LotteryStats(
        total_students=len(students_with_choices),
        not_placed=max(0, len(students_with_choices) - len(results)),
        completed_at=job.completed_at,
        admin_email=admin.email if admin is not None else None,
    )
    for result in results:
        ordered = [choice.position_id for choice in choices_by_student.get(result.student_id, [])]
        try:
            index = ordered.index(result.position_id)
        except ValueError:
            index = None
        if index is None or index >= TRACKED_CHOICES:
            stats.not_placed += 1
        else:
            stats.choice_counts[index] += 1
    return stats
