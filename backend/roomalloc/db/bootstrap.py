from __future__ import annotations

import logging

from sqlalchemy import inspect

from roomalloc.db.base import Base
from roomalloc.db.session import engine
import roomalloc.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "school_terms": {"id", "year", "period", "reservation_deadline"},
    "rooms": {"id", "name", "seat_count"},
    "school_classes": {
        "id",
        "school_term_id",
        "discipline_code",
        "section_code",
        "section_type",
        "enrollment_capacity",
        "is_external",
        "room_id",
        "fusion_id",
    },
    "class_schedules": {"id", "school_class_id", "day_of_week", "start_time", "end_time"},
    "fusions": {"id", "master_id"},
    "priorities": {"id", "school_class_id", "room_id", "priority"},
    "reservation_jobs": {"id", "room_ids", "status", "backend", "progress", "data", "error"},
    "reservations": {"id", "school_class_id", "backend", "external_id", "recurrent", "status"},
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
