from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from timetabler.core.config import get_settings
from timetabler.db.session import SessionLocal
from timetabler.services.locking import KeyLockManager
from timetabler.services.reconciliation import ReconciliationCoordinator
from timetabler.services.snapshot_provider import SqlSnapshotProvider
from timetabler.services.timetable_engine import TimetableEngine
from timetabler.services.timetable_store import SqlTimetableStore
from timetabler.services.worker_pool import SchedulingWorkerPool


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_lock_manager() -> KeyLockManager:
    return KeyLockManager(wait_seconds=get_settings().lock_wait_seconds)


@lru_cache
def get_worker_pool() -> SchedulingWorkerPool:
    return SchedulingWorkerPool(max_workers=get_settings().scheduling_workers)


def get_snapshot_provider(db: Session = Depends(get_db)) -> SqlSnapshotProvider:
    return SqlSnapshotProvider(db)


def get_timetable_store(db: Session = Depends(get_db)) -> SqlTimetableStore:
    return SqlTimetableStore(db)


def get_engine(
    snapshots: SqlSnapshotProvider = Depends(get_snapshot_provider),
    store: SqlTimetableStore = Depends(get_timetable_store),
) -> TimetableEngine:
    return TimetableEngine(snapshots, store, locks=get_lock_manager(), pool=get_worker_pool())


def get_coordinator(
    snapshots: SqlSnapshotProvider = Depends(get_snapshot_provider),
    store: SqlTimetableStore = Depends(get_timetable_store),
) -> ReconciliationCoordinator:
    return ReconciliationCoordinator(
        snapshots,
        store,
        locks=get_lock_manager(),
        pool=get_worker_pool(),
        timeout_seconds=get_settings().reconciliation_timeout_seconds,
    )
