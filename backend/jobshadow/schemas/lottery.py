from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from jobshadow.models.lottery import GradeOrder, LotteryJobStatus


class StartLotteryRequest(BaseModel):
    grade_order: GradeOrder | None = None


class StartLotteryResponse(BaseModel):
    job_id: str
    message: str = "Lottery started. Poll the status endpoint for progress."


class LotteryJobStatusOut(BaseModel):
    status: LotteryJobStatus
    progress: float
    current_seed: int
    error: str | None = None


class RunningLotteryJobOut(BaseModel):
    job_id: str | None = None
    status: LotteryJobStatus | None = None
    progress: float | None = None
    current_seed: int | None = None


class GradeOrderUpdate(BaseModel):
    grade_order: GradeOrder


class ManualAssignmentCreate(BaseModel):
    student_id: str = Field(min_length=1, max_length=36)
    position_id: str = Field(min_length=1, max_length=36)


class ManualAssignmentOut(BaseModel):
    id: str
    student_id: str
    position_id: str

    model_config = {"from_attributes": True}


class PrefillSettingUpdate(BaseModel):
    company_id: str = Field(min_length=1, max_length=36)
    prefill_percentage: int = Field(ge=0, le=100)


class PrefillSettingOut(BaseModel):
    id: str
    company_id: str
    prefill_percentage: int

    model_config = {"from_attributes": True}


class LotteryConfigurationOut(BaseModel):
    id: str
    school_id: str
    grade_order: GradeOrder
    manual_assignments: list[ManualAssignmentOut] = Field(default_factory=list)
    prefill_settings: list[PrefillSettingOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class LotteryResultOut(BaseModel):
    student_id: str
    position_id: str

    model_config = {"from_attributes": True}


class LotteryStatsOut(BaseModel):
    total_students: int
    placed: int
    not_placed: int
    choice_counts: list[int]
    completed_at: datetime | None = None
    admin_email: str | None = None


class LotteryResultsOut(BaseModel):
    job_id: str | None = None
    results: list[LotteryResultOut] = Field(default_factory=list)
    stats: LotteryStatsOut | None = None
