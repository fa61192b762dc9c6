from __future__ import annotations

import logging

from sqlalchemy import inspect

from jobshadow.db.base import Base
from jobshadow.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "events": {"id", "school_id", "date", "is_active"},
    "positions": {"id", "event_id", "company_id", "host_user_id", "slots"},
    "students": {"id", "school_id", "user_id", "graduating_class_year"},
    "student_choices": {"id", "student_id", "position_id", "rank"},
    "lottery_configurations": {"id", "school_id", "grade_order"},
    "manual_assignments": {"id", "lottery_configuration_id", "student_id", "position_id", "created_at"},
    "prefill_settings": {"id", "lottery_configuration_id", "company_id", "prefill_percentage"},
    "lottery_jobs": {"id", "event_id", "admin_id", "status", "progress", "current_seed", "completed_at", "error"},
    "lottery_results": {"id", "lottery_job_id", "student_id", "position_id"},
}


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
