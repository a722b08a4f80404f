from __future__ import annotations

from datetime import datetime, timezone
import logging
from time import perf_counter
from typing import Callable, TypeVar
import uuid

from timetabler.core.exceptions import InfeasibleError, ResourceNotFoundError, ValidationError
from timetabler.schemas.conflict import ConflictReport
from timetabler.schemas.entities import EntitySnapshot, SchedulingKey
from timetabler.schemas.settings import GenerationConfig
from timetabler.schemas.timetable import (
    ALLOWED_STATUS_TRANSITIONS,
    ScheduledSession,
    Timetable,
    TimetableStatus,
)
from timetabler.services.conflict_service import ConflictService
from timetabler.services.constraint_model import ConstraintModelBuilder
from timetabler.services.locking import KeyLockManager
from timetabler.services.scoring import compute_statistics, evaluate_score
from timetabler.services.slot_allocator import AllocationResult, SlotAllocator
from timetabler.services.snapshot_provider import SnapshotProvider
from timetabler.services.timetable_store import TimetableStore
from timetabler.services.worker_pool import SchedulingWorkerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def run_on_pool(pool: SchedulingWorkerPool | None, fn: Callable[..., T], *args) -> T:
    if pool is None:
        return fn(*args)
    return pool.run(fn, *args)


def rescore(timetable: Timetable, snapshot: EntitySnapshot, report: ConflictReport) -> dict:
    """Score, breakdown, statistics and conflicts for a session set, ready for model_copy(update=...)."""
    score, breakdown = evaluate_score(
        timetable.sessions,
        report.conflicts,
        timetable.config,
        len(snapshot.classrooms),
    )
    statistics = compute_statistics(timetable.sessions, timetable.config, snapshot.classroom_map().keys())
    return {
        "score": score,
        "score_breakdown": breakdown,
        "statistics": statistics,
        "conflicts": report.conflicts,
    }


def _allocate(snapshot: EntitySnapshot, config: GenerationConfig, unavailability: dict) -> AllocationResult:
    model = ConstraintModelBuilder(config, extra_unavailability=unavailability).build(snapshot)
    return SlotAllocator(model).allocate()


class TimetableEngine:
    """Generation entry point: snapshot in, scored timetable out, one run per scheduling key at a time."""

    def __init__(
        self,
        snapshots: SnapshotProvider,
        store: TimetableStore,
        *,
        locks: KeyLockManager,
        pool: SchedulingWorkerPool | None = None,
    ) -> None:
        self.snapshots = snapshots
        self.store = store
        self.locks = locks
        self.pool = pool

    def _existing(self, key: SchedulingKey) -> Timetable | None:
        try:
            return self.store.get(key)
        except ResourceNotFoundError:
            return None

    def generate(
        self,
        department: str,
        academic_year: str,
        semester: int,
        config: GenerationConfig,
    ) -> Timetable:
        key = SchedulingKey(department=department, academic_year=academic_year, semester=semester)
        with self.locks.hold(key):
            snapshot = self.snapshots.get_snapshot(department, academic_year, semester)
            existing = self._existing(key)
            unavailability = dict(existing.faculty_unavailability) if existing else {}

            logger.info(
                "Generation started key=%s subjects=%s faculty=%s classrooms=%s batches=%s",
                key.as_string(),
                len(snapshot.subjects),
                len(snapshot.faculty),
                len(snapshot.classrooms),
                len(snapshot.batches),
            )
            started = perf_counter()
            allocation = run_on_pool(self.pool, _allocate, snapshot, config, unavailability)
            report = ConflictService(allocation.sessions, snapshot, config, unavailability).detect_conflicts()
            if report.blocking:
                logger.warning(
                    "Generation rejected key=%s blocking=%s",
                    key.as_string(),
                    len(report.blocking),
                )
                raise InfeasibleError(
                    "Allocation finished with blocking conflicts",
                    unplaced=sorted({sid for item in report.blocking for sid in item.session_ids}),
                    details={"conflicts": [item.model_dump(mode="json") for item in report.blocking]},
                )

            now = utc_now()
            timetable = Timetable(
                id=existing.id if existing else str(uuid.uuid4()),
                key=key,
                status=TimetableStatus.generated,
                sessions=allocation.sessions,
                config=config,
                faculty_unavailability=unavailability,
                version=existing.version + 1 if existing else 1,
                generation_ms=int((perf_counter() - started) * 1000),
                created_at=existing.created_at if existing and existing.created_at else now,
                updated_at=now,
            )
            timetable = timetable.model_copy(update=rescore(timetable, snapshot, report))
            stored = self.store.put(key, timetable)
            logger.info(
                "Generation finished key=%s sessions=%s score=%s backtracks=%s ms=%s",
                key.as_string(),
                len(stored.sessions),
                stored.score,
                allocation.backtracks,
                stored.generation_ms,
            )
            return stored

    def transition_status(self, timetable_id: str, status: TimetableStatus) -> Timetable:
        timetable = self.store.find(timetable_id)
        with self.locks.hold(timetable.key):
            current = self.store.find(timetable_id)
            if status not in ALLOWED_STATUS_TRANSITIONS[current.status]:
                raise ValidationError(
                    f"Cannot move timetable from {current.status.value} to {status.value}",
                    details={"from": current.status.value, "to": status.value},
                )
            updated = current.model_copy(
                update={"status": status, "version": current.version + 1, "updated_at": utc_now()}
            )
            logger.info("Timetable status id=%s %s -> %s", timetable_id, current.status.value, status.value)
            return self.store.put(current.key, updated)

    def conflicts_for(self, timetable_id: str) -> ConflictReport:
        timetable = self.store.find(timetable_id)
        snapshot = self.snapshots.get_snapshot(
            timetable.key.department,
            timetable.key.academic_year,
            timetable.key.semester,
        )
        return ConflictService(
            timetable.sessions,
            snapshot,
            timetable.config,
            timetable.faculty_unavailability,
        ).detect_conflicts()

    def detect(
        self,
        department: str,
        academic_year: str,
        semester: int,
        sessions: list[ScheduledSession],
        config: GenerationConfig,
    ) -> ConflictReport:
        snapshot = self.snapshots.get_snapshot(department, academic_year, semester)
        return ConflictService(sessions, snapshot, config).detect_conflicts()
