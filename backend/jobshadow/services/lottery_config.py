from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from jobshadow.core.exceptions import LotteryPreconditionError, ResourceNotFoundError
from jobshadow.models.lottery import GradeOrder, LotteryConfiguration, ManualAssignment, PrefillSetting
from jobshadow.models.position import Position
from jobshadow.models.school import Company, Event
from jobshadow.models.student import Student
from jobshadow.models.user import ADMIN_ROLES, User, UserRole

logger = logging.getLogger(__name__)


def resolve_admin_school(db: Session, admin_id: str, *, require_full_access: bool = True) -> str:
    admin = db.get(User, admin_id)
    if admin is None or admin.role not in ADMIN_ROLES or admin.school_id is None:
        raise LotteryPreconditionError("Admin not found or no schools assigned", details={"admin_id": admin_id})
    if require_full_access and admin.role != UserRole.full_admin:
        raise LotteryPreconditionError("Read-only admins cannot manage the lottery", details={"admin_id": admin_id})
    return admin.school_id


def get_active_event(db: Session, school_id: str) -> Event | None:
    return db.execute(
        select(Event).where(Event.school_id == school_id, Event.is_active.is_(True)).order_by(Event.date.desc())
    ).scalars().first()


def get_configuration(db: Session, school_id: str) -> LotteryConfiguration | None:
    return db.execute(
        select(LotteryConfiguration).where(LotteryConfiguration.school_id == school_id)
    ).scalar_one_or_none()


def get_or_create_configuration(db: Session, school_id: str) -> LotteryConfiguration:
    record = get_configuration(db, school_id)
    if record is not None:
        return record
    record = LotteryConfiguration(school_id=school_id, grade_order=GradeOrder.NONE)
    db.add(record)
    db.flush()
    logger.info("LOTTERY CONFIGURATION CREATED | school_id=%s", school_id)
    return record


def set_grade_order(db: Session, *, school_id: str, grade_order: GradeOrder) -> LotteryConfiguration:
    record = get_or_create_configuration(db, school_id)
    record.grade_order = grade_order
    return record


def _require_student(db: Session, school_id: str, student_id: str) -> Student:
    student = db.get(Student, student_id)
    if student is None or student.school_id != school_id:
        raise ResourceNotFoundError("Student", student_id)
    if student.user_id is not None:
        account = db.get(User, student.user_id)
        if account is not None and account.role == UserRole.internal_tester:
            raise ResourceNotFoundError("Student", student_id)
    return student


def _require_position(db: Session, school_id: str, position_id: str) -> Position:
    position = db.get(Position, position_id)
    if position is None:
        raise ResourceNotFoundError("Position", position_id)
    event = db.get(Event, position.event_id)
    if event is None or event.school_id != school_id:
        raise ResourceNotFoundError("Position", position_id)
    return position


def _require_company(db: Session, school_id: str, company_id: str) -> Company:
    company = db.get(Company, company_id)
    if company is None or company.school_id != school_id:
        raise ResourceNotFoundError("Company", company_id)
    return company


def add_manual_assignment(
    db: Session,
    *,
    school_id: str,
    student_id: str,
    position_id: str,
) -> ManualAssignment:
    _require_student(db, school_id, student_id)
    _require_position(db, school_id, position_id)
    config = get_or_create_configuration(db, school_id)

    existing = db.execute(
        select(ManualAssignment).where(
            ManualAssignment.student_id == student_id,
            ManualAssignment.position_id == position_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    record = ManualAssignment(lottery_configuration_id=config.id, student_id=student_id, position_id=position_id)
    db.add(record)
    db.flush()
    return record


def remove_manual_assignment(db: Session, *, school_id: str, student_id: str) -> int:
    config = get_configuration(db, school_id)
    if config is None:
        raise LotteryPreconditionError("No lottery configuration found", details={"school_id": school_id})
    result = db.execute(
        delete(ManualAssignment).where(
            ManualAssignment.lottery_configuration_id == config.id,
            ManualAssignment.student_id == student_id,
        )
    )
    db.expire(config, ["manual_assignments"])
    return result.rowcount or 0


def upsert_prefill_setting(
    db: Session,
    *,
    school_id: str,
    company_id: str,
    prefill_percentage: int,
) -> PrefillSetting:
    if prefill_percentage < 0 or prefill_percentage > 100:
        raise LotteryPreconditionError(
            "Prefill percentage must be between 0 and 100",
            details={"prefill_percentage": prefill_percentage},
        )
    _require_company(db, school_id, company_id)
    config = get_or_create_configuration(db, school_id)

    record = db.execute(
        select(PrefillSetting).where(
            PrefillSetting.lottery_configuration_id == config.id,
            PrefillSetting.company_id == company_id,
        )
    ).scalar_one_or_none()
    if record is None:
        record = PrefillSetting(
            lottery_configuration_id=config.id,
            company_id=company_id,
            prefill_percentage=prefill_percentage,
        )
        db.add(record)
    else:
        record.prefill_percentage = prefill_percentage
    db.flush()
    return record


def remove_prefill_setting(db: Session, *, school_id: str, company_id: str) -> int:
    config = get_configuration(db, school_id)
    if config is None:
        raise LotteryPreconditionError("No lottery configuration found", details={"school_id": school_id})
    result = db.execute(
        delete(PrefillSetting).where(
            PrefillSetting.lottery_configuration_id == config.id,
            PrefillSetting.company_id == company_id,
        )
    )
    db.expire(config, ["prefill_settings"])
    return result.rowcount or 0
