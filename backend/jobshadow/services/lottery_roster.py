from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, aliased

from jobshadow.core.exceptions import LotteryPreconditionError
from jobshadow.models.lottery import GradeOrder, LotteryConfiguration
from jobshadow.models.position import Position
from jobshadow.models.school import Event
from jobshadow.models.student import Student, StudentChoice
from jobshadow.models.user import User, UserRole
from jobshadow.services.grades import current_grade
from jobshadow.services.lottery_engine import Choice, StudentPreferences
from jobshadow.services.lottery_overrides import ManualPlacement, PositionSlots, PrefillReservation

NO_POSITIONS_MESSAGE = "No positions found for the active event. Cannot run lottery without positions."
NO_CHOICES_MESSAGE = (
    "No student choices found for the active event. The event may be in draft mode or students "
    "have not yet signed up. Please ensure the event is properly configured and students have "
    "access before running the lottery."
)


@dataclass
class LotteryInputs:
    event_id: str
    grade_order: GradeOrder
    students: list[StudentPreferences] = field(default_factory=list)
    positions: list[PositionSlots] = field(default_factory=list)
    manual_placements: list[ManualPlacement] = field(default_factory=list)
    prefill_reservations: list[PrefillReservation] = field(default_factory=list)

    @property
    def roster_ids(self) -> set[str]:
        return {student.student_id for student in self.students}

    @property
    def students_with_choices(self) -> int:
        return sum(1 for student in self.students if student.choices)

    def ensure_runnable(self) -> None:
        if not self.positions:
            raise LotteryPreconditionError(NO_POSITIONS_MESSAGE, details={"event_id": self.event_id})
        if self.students_with_choices == 0:
            raise LotteryPreconditionError(NO_CHOICES_MESSAGE, details={"event_id": self.event_id})


def load_event_positions(db: Session, event_id: str) -> list[Position]:
    host = aliased(User)
    return list(
        db.execute(
            select(Position)
            .outerjoin(host, host.id == Position.host_user_id)
            .where(
                Position.event_id == event_id,
                or_(host.id.is_(None), host.role != UserRole.internal_tester),
            )
            .order_by(Position.title)
        ).scalars()
    )


def load_school_students(db: Session, school_id: str) -> list[Student]:
    account = aliased(User)
    return list(
        db.execute(
            select(Student)
            .outerjoin(account, account.id == Student.user_id)
            .where(
                Student.school_id == school_id,
                or_(account.id.is_(None), account.role != UserRole.internal_tester),
            )
            .order_by(Student.last_name, Student.first_name)
        ).scalars()
    )


def load_event_choices(db: Session, position_ids: list[str]) -> dict[str, list[StudentChoice]]:
    if not position_ids:
        return {}
    rows = db.execute(
        select(StudentChoice)
        .where(StudentChoice.position_id.in_(position_ids))
        .order_by(StudentChoice.student_id, StudentChoice.rank)
    ).scalars()
    grouped: dict[str, list[StudentChoice]] = defaultdict(list)
    for row in rows:
        grouped[row.student_id].append(row)
    return grouped


def load_lottery_inputs(db: Session, *, event: Event, config: LotteryConfiguration) -> LotteryInputs:
    positions = load_event_positions(db, event.id)
    choices_by_student = load_event_choices(db, [position.id for position in positions])

    inputs = LotteryInputs(event_id=event.id, grade_order=config.grade_order)
    inputs.positions = [
        PositionSlots(position_id=position.id, slots=position.slots, company_id=position.company_id)
        for position in positions
    ]
    for student in load_school_students(db, event.school_id):
        inputs.students.append(
            StudentPreferences(
                student_id=student.id,
                grade=current_grade(student.graduating_class_year, event.date),
                choices=tuple(
                    Choice(position_id=choice.position_id, rank=choice.rank)
                    for choice in choices_by_student.get(student.id, [])
                ),
            )
        )
    inputs.manual_placements = [
        ManualPlacement(student_id=item.student_id, position_id=item.position_id)
        for item in config.manual_assignments
    ]
    inputs.prefill_reservations = [
        PrefillReservation(company_id=item.company_id, percentage=item.prefill_percentage)
        for item in config.prefill_settings
    ]
    return inputs
