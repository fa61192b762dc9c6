from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from jobshadow.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class GradeOrder(str, Enum):
    NONE = "NONE"
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class LotteryJobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LotteryConfiguration(Base):
    __tablename__ = "lottery_configurations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    grade_order: Mapped[GradeOrder] = mapped_column(
        SAEnum(GradeOrder, name="grade_order"),
        nullable=False,
        default=GradeOrder.NONE,
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    manual_assignments: Mapped[list[ManualAssignment]] = relationship(
        back_populates="configuration",
        cascade="all, delete-orphan",
        order_by="ManualAssignment.created_at",
    )
    prefill_settings: Mapped[list[PrefillSetting]] = relationship(
        back_populates="configuration",
        cascade="all, delete-orphan",
    )


class ManualAssignment(Base):
    __tablename__ = "manual_assignments"
    __table_args__ = (UniqueConstraint("student_id", "position_id", name="uq_manual_assignments_student_position"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lottery_configuration_id: Mapped[str] = mapped_column(
        ForeignKey("lottery_configurations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    position_id: Mapped[str] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), nullable=False)
    # Application order decides who wins when several manual placements target one full position.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    configuration: Mapped[LotteryConfiguration] = relationship(back_populates="manual_assignments")


class PrefillSetting(Base):
    __tablename__ = "prefill_settings"
    __table_args__ = (
        UniqueConstraint("lottery_configuration_id", "company_id", name="uq_prefill_settings_configuration_company"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lottery_configuration_id: Mapped[str] = mapped_column(
        ForeignKey("lottery_configurations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    prefill_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    configuration: Mapped[LotteryConfiguration] = relationship(back_populates="prefill_settings")


class LotteryJob(Base):
    __tablename__ = "lottery_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    admin_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[LotteryJobStatus] = mapped_column(
        SAEnum(LotteryJobStatus, name="lottery_job_status"),
        nullable=False,
        default=LotteryJobStatus.RUNNING,
        index=True,
    )
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_seed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(String(190), nullable=True)

    results: Mapped[list[LotteryResult]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LotteryResult(Base):
    __tablename__ = "lottery_results"
    __table_args__ = (UniqueConstraint("lottery_job_id", "student_id", name="uq_lottery_results_job_student"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lottery_job_id: Mapped[str] = mapped_column(
        ForeignKey("lottery_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    position_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    job: Mapped[LotteryJob] = relationship(back_populates="results")
