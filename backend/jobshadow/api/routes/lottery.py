import logging

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from jobshadow.api.deps import get_current_admin, get_db, get_lottery_runner, require_full_admin
from jobshadow.core.exceptions import LotteryPreconditionError
from jobshadow.models.lottery import LotteryJobStatus, LotteryResult
from jobshadow.models.user import User
from jobshadow.schemas.lottery import (
    GradeOrderUpdate,
    LotteryConfigurationOut,
    LotteryJobStatusOut,
    LotteryResultOut,
    LotteryResultsOut,
    LotteryStatsOut,
    ManualAssignmentCreate,
    ManualAssignmentOut,
    PrefillSettingOut,
    PrefillSettingUpdate,
    RunningLotteryJobOut,
    StartLotteryRequest,
    StartLotteryResponse,
)
from jobshadow.services.lottery_config import (
    add_manual_assignment,
    get_active_event,
    get_or_create_configuration,
    remove_manual_assignment,
    remove_prefill_setting,
    resolve_admin_school,
    set_grade_order,
    upsert_prefill_setting,
)
from jobshadow.services.lottery_jobs import (
    LotteryJobRunner,
    get_job_status,
    get_latest_job_for_event,
    get_running_job_for_event,
)
from jobshadow.services.lottery_stats import calculate_lottery_stats

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/lottery/jobs", response_model=StartLotteryResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_lottery(
    payload: StartLotteryRequest | None = Body(default=None),
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
    runner: LotteryJobRunner = Depends(get_lottery_runner),
) -> StartLotteryResponse:
    if payload is not None and payload.grade_order is not None:
        school_id = resolve_admin_school(db, current_admin.id)
        # Saved by the job commit, or rolled back with a rejected start.
        set_grade_order(db, school_id=school_id, grade_order=payload.grade_order)
    try:
        job_id = runner.start(db, current_admin.id)
    except LotteryPreconditionError as exc:
        db.rollback()
        logger.warning(
            "LOTTERY START REJECTED | admin_id=%s | reason=%s",
            current_admin.id,
            exc.message,
        )
        raise
    return StartLotteryResponse(job_id=job_id)


@router.get("/lottery/status/running", response_model=RunningLotteryJobOut)
def running_lottery_job(
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
) -> RunningLotteryJobOut:
    school_id = resolve_admin_school(db, current_admin.id, require_full_access=False)
    event = get_active_event(db, school_id)
    if event is None:
        return RunningLotteryJobOut()
    job = get_running_job_for_event(db, event.id)
    if job is None:
        return RunningLotteryJobOut()
    return RunningLotteryJobOut(
        job_id=job.id,
        status=job.status,
        progress=job.progress,
        current_seed=job.current_seed,
    )


@router.get("/lottery/status/{job_id}", response_model=LotteryJobStatusOut)
def lottery_job_status(job_id: str, db: Session = Depends(get_db)) -> LotteryJobStatusOut:
    snapshot = get_job_status(db, job_id)
    return LotteryJobStatusOut(
        status=snapshot.status,
        progress=snapshot.progress,
        current_seed=snapshot.current_seed,
        error=snapshot.error,
    )


@router.get("/lottery/results", response_model=LotteryResultsOut)
def latest_lottery_results(
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
) -> LotteryResultsOut:
    school_id = resolve_admin_school(db, current_admin.id, require_full_access=False)
    event = get_active_event(db, school_id)
    if event is None:
        return LotteryResultsOut()
    job = get_latest_job_for_event(db, event.id, status=LotteryJobStatus.COMPLETED)
    if job is None:
        return LotteryResultsOut()

    results = [
        LotteryResultOut.model_validate(row)
        for row in db.execute(
            select(LotteryResult).where(LotteryResult.lottery_job_id == job.id).order_by(LotteryResult.student_id)
        ).scalars()
    ]
    stats = calculate_lottery_stats(db, job, event)
    return LotteryResultsOut(
        job_id=job.id,
        results=results,
        stats=LotteryStatsOut(
            total_students=stats.total_students,
            placed=stats.placed,
            not_placed=stats.not_placed,
            choice_counts=stats.choice_counts,
            completed_at=stats.completed_at,
            admin_email=stats.admin_email,
        ),
    )


@router.get("/lottery/configuration", response_model=LotteryConfigurationOut)
def get_lottery_configuration(
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> LotteryConfigurationOut:
    school_id = resolve_admin_school(db, current_admin.id)
    config = get_or_create_configuration(db, school_id)
    db.commit()
    db.refresh(config)
    return config


@router.put("/lottery/configuration", response_model=LotteryConfigurationOut)
def update_lottery_configuration(
    payload: GradeOrderUpdate,
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> LotteryConfigurationOut:
    school_id = resolve_admin_school(db, current_admin.id)
    config = set_grade_order(db, school_id=school_id, grade_order=payload.grade_order)
    db.commit()
    db.refresh(config)
    return config


@router.post(
    "/lottery/configuration/manual-assignments",
    response_model=ManualAssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
def create_manual_assignment(
    payload: ManualAssignmentCreate,
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> ManualAssignmentOut:
    school_id = resolve_admin_school(db, current_admin.id)
    record = add_manual_assignment(
        db,
        school_id=school_id,
        student_id=payload.student_id,
        position_id=payload.position_id,
    )
    db.commit()
    db.refresh(record)
    return record


@router.delete(
    "/lottery/configuration/manual-assignments/{student_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_manual_assignment(
    student_id: str,
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> None:
    school_id = resolve_admin_school(db, current_admin.id)
    remove_manual_assignment(db, school_id=school_id, student_id=student_id)
    db.commit()


@router.put("/lottery/configuration/prefill-settings", response_model=PrefillSettingOut)
def put_prefill_setting(
    payload: PrefillSettingUpdate,
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> PrefillSettingOut:
    school_id = resolve_admin_school(db, current_admin.id)
    record = upsert_prefill_setting(
        db,
        school_id=school_id,
        company_id=payload.company_id,
        prefill_percentage=payload.prefill_percentage,
    )
    db.commit()
    db.refresh(record)
    return record


@router.delete(
    "/lottery/configuration/prefill-settings/{company_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_prefill_setting(
    company_id: str,
    current_admin: User = Depends(require_full_admin),
    db: Session = Depends(get_db),
) -> None:
    school_id = resolve_admin_school(db, current_admin.id)
    remove_prefill_setting(db, school_id=school_id, company_id=company_id)
    db.commit()
