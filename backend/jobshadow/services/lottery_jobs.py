from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from jobshadow.core.config import Settings, get_settings
from jobshadow.core.exceptions import LotteryJobSuperseded, LotteryPreconditionError, ResourceNotFoundError
from jobshadow.db.session import SessionLocal
from jobshadow.models.lottery import LotteryJob, LotteryJobStatus, LotteryResult
from jobshadow.models.school import Event
from jobshadow.services.lottery_config import get_active_event, get_or_create_configuration, resolve_admin_school
from jobshadow.services.lottery_engine import BestResult, LotteryOptimizer
from jobshadow.services.lottery_overrides import resolve_overrides
from jobshadow.services.lottery_roster import load_lottery_inputs

logger = logging.getLogger(__name__)

NO_ACTIVE_EVENT_MESSAGE = "No active event found for this school. Activate an event before running the lottery."


@dataclass(frozen=True)
class LotteryJobSnapshot:
    job_id: str
    status: LotteryJobStatus
    progress: float
    current_seed: int
    error: str | None


def truncate_error(exc: BaseException, max_length: int) -> str:
    message = str(exc) or exc.__class__.__name__
    return message[:max_length]


def _snapshot(job: LotteryJob) -> LotteryJobSnapshot:
    return LotteryJobSnapshot(
        job_id=job.id,
        status=job.status,
        progress=job.progress,
        current_seed=job.current_seed,
        error=job.error,
    )


def get_job_status(db: Session, job_id: str) -> LotteryJobSnapshot:
    job = db.get(LotteryJob, job_id)
    if job is None:
        raise ResourceNotFoundError("LotteryJob", job_id)
    return _snapshot(job)


def get_running_job_for_event(db: Session, event_id: str) -> LotteryJob | None:
    return db.execute(
        select(LotteryJob)
        .where(LotteryJob.event_id == event_id, LotteryJob.status == LotteryJobStatus.RUNNING)
        .order_by(LotteryJob.started_at.desc())
    ).scalars().first()


def get_latest_job_for_event(
    db: Session,
    event_id: str,
    *,
    status: LotteryJobStatus | None = None,
) -> LotteryJob | None:
    query = select(LotteryJob).where(LotteryJob.event_id == event_id)
    if status is not None:
        query = query.where(LotteryJob.status == status)
    return db.execute(query.order_by(LotteryJob.started_at.desc())).scalars().first()


def purge_jobs_for_event(db: Session, event_id: str) -> int:
    job_ids = select(LotteryJob.id).where(LotteryJob.event_id == event_id)
    db.execute(delete(LotteryResult).where(LotteryResult.lottery_job_id.in_(job_ids)))
    result = db.execute(delete(LotteryJob).where(LotteryJob.event_id == event_id))
    return result.rowcount or 0


def create_lottery_job(db: Session, admin_id: str) -> LotteryJob:
    """Validate a run for the admin's active event and replace any earlier job for it.

    Raises ``LotteryPreconditionError`` before any job row exists when the
    admin has no school, the school has no active event, the event has no
    positions, or nobody has picked a position yet.
    """
    school_id = resolve_admin_school(db, admin_id)
    event = get_active_event(db, school_id)
    if event is None:
        raise LotteryPreconditionError(NO_ACTIVE_EVENT_MESSAGE, details={"school_id": school_id})

    config = get_or_create_configuration(db, school_id)
    load_lottery_inputs(db, event=event, config=config).ensure_runnable()

    removed = purge_jobs_for_event(db, event.id)
    job = LotteryJob(
        event_id=event.id,
        admin_id=admin_id,
        status=LotteryJobStatus.RUNNING,
        progress=0.0,
        current_seed=0,
        started_at=datetime.now(tz=timezone.utc),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(
        "LOTTERY JOB CREATED | job_id=%s | admin_id=%s | event_id=%s | replaced_jobs=%s",
        job.id,
        admin_id,
        event.id,
        removed,
    )
    return job


def insert_results_skip_duplicates(db: Session, rows: list[dict]) -> None:
    if not rows:
        return
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        statement = postgresql_insert(LotteryResult).values(rows).on_conflict_do_nothing(
            index_elements=["lottery_job_id", "student_id"]
        )
    elif dialect == "sqlite":
        statement = sqlite_insert(LotteryResult).values(rows).on_conflict_do_nothing(
            index_elements=["lottery_job_id", "student_id"]
        )
    else:
        job_ids = {row["lottery_job_id"] for row in rows}
        existing = set(
            db.execute(
                select(LotteryResult.lottery_job_id, LotteryResult.student_id).where(
                    LotteryResult.lottery_job_id.in_(job_ids)
                )
            ).tuples()
        )
        rows = [row for row in rows if (row["lottery_job_id"], row["student_id"]) not in existing]
        if not rows:
            return
        statement = insert(LotteryResult).values(rows)
    db.execute(statement)


class LotteryJobRunner:
    """Owns the background tasks that compute lottery jobs.

    Status is always read back from the job row, so a task handle is only kept
    here to allow awaiting or cancelling it from the same process.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def start(self, db: Session, admin_id: str) -> str:
        job = create_lottery_job(db, admin_id)
        self.launch(job.id)
        return job.id

    def launch(self, job_id: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.run(job_id), name=f"lottery-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    def task_for(self, job_id: str) -> asyncio.Task | None:
        return self._tasks.get(job_id)

    async def shutdown(self) -> None:
        pending = list(self._tasks.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def run(self, job_id: str) -> None:
        started = perf_counter()
        logger.info("LOTTERY JOB START | job_id=%s", job_id)
        db = self._session_factory()
        try:
            best = await self._execute(db, job_id)
            logger.info(
                "LOTTERY JOB COMPLETE | job_id=%s | best_cost=%s | wall_ms=%s",
                job_id,
                best.cost,
                int((perf_counter() - started) * 1000),
            )
        except LotteryJobSuperseded:
            db.rollback()
            logger.info("LOTTERY JOB SUPERSEDED | job_id=%s", job_id)
        except Exception as exc:
            db.rollback()
            logger.exception("LOTTERY JOB FAILED | job_id=%s", job_id)
            self._mark_failed(db, job_id, exc)
        finally:
            db.close()

    def _update_job(self, db: Session, job_id: str, *, commit: bool = True, **values) -> None:
        result = db.execute(update(LotteryJob).where(LotteryJob.id == job_id).values(**values))
        if result.rowcount == 0:
            raise LotteryJobSuperseded(job_id)
        if commit:
            db.commit()

    def _mark_failed(self, db: Session, job_id: str, exc: Exception) -> None:
        try:
            self._update_job(
                db,
                job_id,
                status=LotteryJobStatus.FAILED,
                error=truncate_error(exc, self.settings.lottery_error_max_length),
            )
        except LotteryJobSuperseded:
            db.rollback()
            logger.info("LOTTERY JOB FAILURE NOT RECORDED | job_id=%s | reason=superseded", job_id)
        except Exception:
            db.rollback()
            logger.exception("LOTTERY JOB FAILURE NOT RECORDED | job_id=%s", job_id)

    async def _execute(self, db: Session, job_id: str) -> BestResult:
        settings = self.settings
        job = db.get(LotteryJob, job_id)
        if job is None:
            raise ResourceNotFoundError("LotteryJob", job_id)
        self._update_job(db, job_id, progress=0.0, current_seed=0)

        school_id = resolve_admin_school(db, job.admin_id)
        config = get_or_create_configuration(db, school_id)
        db.commit()

        event = db.get(Event, job.event_id) if job.event_id else get_active_event(db, school_id)
        if event is None:
            raise LotteryPreconditionError(NO_ACTIVE_EVENT_MESSAGE, details={"school_id": school_id})

        inputs = load_lottery_inputs(db, event=event, config=config)
        inputs.ensure_runnable()
        resolution = resolve_overrides(
            inputs.positions,
            inputs.manual_placements,
            inputs.prefill_reservations,
            roster=inputs.roster_ids,
        )
        optimizer = LotteryOptimizer(
            students=inputs.students,
            resolution=resolution,
            grade_order=inputs.grade_order,
            trial_count=settings.lottery_trial_count,
            progress_interval=settings.lottery_progress_interval,
            max_rank=settings.lottery_max_rank,
            random_seed=settings.lottery_random_seed,
            yield_seconds=settings.lottery_progress_yield_seconds,
        )
        logger.info(
            "LOTTERY JOB INPUTS | job_id=%s | event_id=%s | students=%s | with_choices=%s | positions=%s | manual=%s | prefill=%s | grade_order=%s",
            job_id,
            event.id,
            len(inputs.students),
            inputs.students_with_choices,
            len(inputs.positions),
            len(resolution.manual_placements),
            len(resolution.withheld),
            inputs.grade_order.value,
        )

        async def publish_progress(seed: int, progress: float) -> None:
            self._update_job(db, job_id, progress=progress, current_seed=seed)

        best = await optimizer.run(on_progress=publish_progress)
        self._persist(db, job_id, best, trial_count=settings.lottery_trial_count)
        return best

    def _persist(self, db: Session, job_id: str, best: BestResult, *, trial_count: int) -> None:
        # Status and results land in one transaction; a vanished row aborts both.
        self._update_job(
            db,
            job_id,
            commit=False,
            status=LotteryJobStatus.COMPLETED,
            progress=100.0,
            current_seed=trial_count,
            completed_at=datetime.now(tz=timezone.utc),
        )
        rows: list[dict] = []
        if best.result is not None:
            for student_id, placement in best.result.assignments.items():
                if placement.position_id is None:
                    continue
                rows.append(
                    {
                        "id": str(uuid.uuid4()),
                        "lottery_job_id": job_id,
                        "student_id": student_id,
                        "position_id": placement.position_id,
                    }
                )
        insert_results_skip_duplicates(db, rows)
        db.commit()
        logger.info("LOTTERY RESULTS SAVED | job_id=%s | placed=%s", job_id, len(rows))


lottery_runner = LotteryJobRunner()
