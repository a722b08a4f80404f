from __future__ import annotations

import logging

from sqlalchemy import inspect

from timetabler.db.base import Base
from timetabler.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("entity_snapshots", "timetables")


def missing_tables() -> list[str]:
    with engine.connect() as connection:
        existing = set(inspect(connection).get_table_names())
    return [name for name in REQUIRED_TABLES if name not in existing]


def _assert_required_tables() -> None:
    missing = missing_tables()
    if missing:
        raise RuntimeError(f"Missing required tables: {', '.join(missing)}")


def ensure_runtime_schema() -> None:
    import timetabler.models  # noqa: F401

    try:
        missing = missing_tables()
        if missing:
            logger.info("Creating missing tables: %s", ", ".join(missing))
            Base.metadata.create_all(bind=engine)
        _assert_required_tables()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc
