from __future__ import annotations

import logging
from typing import Callable

from timetabler.core.exceptions import (
    ConflictError,
    InfeasibleError,
    ResourceNotFoundError,
    ValidationError,
)
from timetabler.schemas.conflict import Conflict
from timetabler.schemas.entities import EntitySnapshot
from timetabler.schemas.leave import LeaveRequest, RequestStatus, RescheduleRequest, RescheduleTarget
from timetabler.schemas.settings import DayWindow, TimeRange, minutes_to_time, parse_time_to_minutes
from timetabler.schemas.timetable import ScheduledSession, Timetable, TimetableStatus
from timetabler.services.conflict_service import ConflictService
from timetabler.services.constraint_model import ConstraintModelBuilder
from timetabler.services.locking import KeyLockManager
from timetabler.services.slot_allocator import SlotAllocator
from timetabler.services.snapshot_provider import SnapshotProvider
from timetabler.services.time_grid import fits_grid
from timetabler.services.timetable_engine import rescore, run_on_pool, utc_now
from timetabler.services.timetable_store import TimetableStore
from timetabler.services.worker_pool import SchedulingWorkerPool

logger = logging.getLogger(__name__)


def _merge_windows(
    recorded: dict[str, list[DayWindow]],
    faculty_id: str,
    windows: list[DayWindow],
) -> dict[str, list[DayWindow]]:
    merged = {key: list(value) for key, value in recorded.items()}
    existing = merged.setdefault(faculty_id, [])
    for window in windows:
        if window not in existing:
            existing.append(window)
    return merged


def _new_blocking(before: list[Conflict], after: list[Conflict]) -> list[Conflict]:
    seen = {item.signature() for item in before if item.is_blocking}
    return [item for item in after if item.is_blocking and item.signature() not in seen]


def _ordered(sessions: list[ScheduledSession]) -> list[ScheduledSession]:
    return sorted(sessions, key=lambda item: item.sort_key())


class ReconciliationCoordinator:
    """Absorbs leave and reschedule requests into a published timetable.

    A timetable moves published -> reconciling -> published. Either the whole
    updated session set is committed through the store, or the stored
    timetable is put back exactly as it was.
    """

    def __init__(
        self,
        snapshots: SnapshotProvider,
        store: TimetableStore,
        *,
        locks: KeyLockManager,
        pool: SchedulingWorkerPool | None = None,
        timeout_seconds: float = 3.0,
    ) -> None:
        self.snapshots = snapshots
        self.store = store
        self.locks = locks
        self.pool = pool
        self.timeout_seconds = timeout_seconds

    def _reconcile(
        self,
        timetable_id: str,
        work: Callable[[Timetable, EntitySnapshot], Timetable | None],
    ) -> Timetable:
        timetable = self.store.find(timetable_id)
        with self.locks.hold(timetable.key):
            current = self.store.find(timetable_id)
            if current.status != TimetableStatus.published:
                raise ValidationError(
                    f"Timetable {timetable_id} is {current.status.value}; only published timetables can be reconciled",
                    details={"status": current.status.value},
                )
            key = current.key
            snapshot = self.snapshots.get_snapshot(key.department, key.academic_year, key.semester)

            self.store.put(key, current.model_copy(update={"status": TimetableStatus.reconciling}))
            try:
                updated = run_on_pool(self.pool, work, current, snapshot)
            except Exception:
                self.store.put(key, current)
                raise
            if updated is None:
                return self.store.put(key, current)
            updated = updated.model_copy(
                update={
                    "status": TimetableStatus.published,
                    "version": current.version + 1,
                    "updated_at": utc_now(),
                }
            )
            return self.store.put(key, updated)

    def apply_leave(self, timetable_id: str, faculty_id: str, time_range: TimeRange) -> Timetable:
        windows = time_range.day_windows(reason="leave")

        def work(current: Timetable, snapshot: EntitySnapshot) -> Timetable | None:
            if faculty_id not in snapshot.faculty_map():
                raise ResourceNotFoundError("Faculty", faculty_id)
            unavailability = _merge_windows(current.faculty_unavailability, faculty_id, windows)
            affected = [
                session
                for session in current.sessions
                if session.faculty_id == faculty_id
                and any(window.overlaps(session.day, session.start_minutes, session.end_minutes) for window in windows)
            ]
            if not affected:
                if unavailability == current.faculty_unavailability:
                    logger.info("Leave already absorbed timetable=%s faculty=%s", current.id, faculty_id)
                    return None
                logger.info("Leave recorded without affected sessions timetable=%s faculty=%s", current.id, faculty_id)
                return current.model_copy(update={"faculty_unavailability": unavailability})

            affected_ids = {session.id for session in affected}
            fixed = [session for session in current.sessions if session.id not in affected_ids]
            # Units come from the pre-leave model; the absent faculty is excluded per unit instead.
            builder = ConstraintModelBuilder(current.config, extra_unavailability=current.faculty_unavailability)
            model = builder.build(snapshot)
            unit_map = model.unit_map()
            missing = sorted(session_id for session_id in affected_ids if session_id not in unit_map)
            if missing:
                raise InfeasibleError(
                    "Affected sessions no longer match the entity snapshot",
                    unplaced=missing,
                    details={"faculty_id": faculty_id},
                )
            units = [unit_map[session.id] for session in affected]
            placed, unplaced = SlotAllocator(model).place_units(
                units,
                fixed=fixed,
                excluded_faculty={unit.unit_id: {faculty_id} for unit in units},
                time_budget=self.timeout_seconds,
            )
            if unplaced:
                logger.warning(
                    "Leave reconciliation infeasible timetable=%s faculty=%s unplaced=%s",
                    current.id,
                    faculty_id,
                    unplaced,
                )
                raise InfeasibleError(
                    f"No replacement found for {len(unplaced)} session(s) of faculty {faculty_id}; "
                    f"manual attention needed",
                    unplaced=sorted(unplaced),
                    limiting_resource=f"faculty:{faculty_id}",
                    details={"needs_attention": sorted(unplaced)},
                )

            candidate = _ordered(fixed + placed)
            before = ConflictService(
                current.sessions, snapshot, current.config, current.faculty_unavailability
            ).detect_conflicts()
            report = ConflictService(candidate, snapshot, current.config, unavailability).detect_conflicts()
            introduced = _new_blocking(before.conflicts, report.conflicts)
            if introduced:
                raise InfeasibleError(
                    "Replacement sessions would introduce blocking conflicts; manual attention needed",
                    unplaced=sorted(affected_ids),
                    details={"conflicts": [item.model_dump(mode="json") for item in introduced]},
                )

            updated = current.model_copy(update={"sessions": candidate, "faculty_unavailability": unavailability})
            logger.info(
                "Leave absorbed timetable=%s faculty=%s moved=%s",
                current.id,
                faculty_id,
                len(placed),
            )
            return updated.model_copy(update=rescore(updated, snapshot, report))

        return self._reconcile(timetable_id, work)

    def apply_reschedule(self, timetable_id: str, session_id: str, target: RescheduleTarget) -> Timetable:
        def work(current: Timetable, snapshot: EntitySnapshot) -> Timetable:
            sessions = current.session_map()
            session = sessions.get(session_id)
            if session is None:
                raise ResourceNotFoundError("Session", session_id)

            start = parse_time_to_minutes(target.start_time)
            end = start + session.duration
            if not fits_grid(current.config, target.day, start, end):
                raise ValidationError(
                    f"{target.day} {target.start_time} does not fit the working grid for a "
                    f"{session.duration}-minute session",
                    details={"day": target.day, "start_time": target.start_time},
                )
            classroom_id = target.classroom_id or session.classroom_id
            faculty_id = target.faculty_id or session.faculty_id
            if classroom_id not in snapshot.classroom_map():
                raise ResourceNotFoundError("Classroom", classroom_id)
            if faculty_id not in snapshot.faculty_map():
                raise ResourceNotFoundError("Faculty", faculty_id)

            moved = ScheduledSession.model_validate(
                {
                    **session.model_dump(),
                    "day": target.day,
                    "start_time": target.start_time,
                    "end_time": minutes_to_time(end),
                    "classroom_id": classroom_id,
                    "faculty_id": faculty_id,
                }
            )
            candidate = _ordered([moved if item.id == session_id else item for item in current.sessions])
            unavailability = current.faculty_unavailability
            before = ConflictService(current.sessions, snapshot, current.config, unavailability).detect_conflicts()
            report = ConflictService(candidate, snapshot, current.config, unavailability).detect_conflicts()
            introduced = _new_blocking(before.conflicts, report.conflicts)
            if introduced:
                colliding = sorted(
                    {sid for item in introduced for sid in item.session_ids if sid != session_id}
                ) or [session_id]
                logger.warning(
                    "Reschedule rejected timetable=%s session=%s colliding=%s",
                    current.id,
                    session_id,
                    colliding,
                )
                raise ConflictError(
                    f"Moving {session_id} to {target.day} {target.start_time} collides with "
                    f"{', '.join(colliding)}",
                    colliding_sessions=colliding,
                    details={"conflicts": [item.model_dump(mode="json") for item in introduced]},
                )

            updated = current.model_copy(update={"sessions": candidate})
            logger.info("Reschedule applied timetable=%s session=%s", current.id, session_id)
            return updated.model_copy(update=rescore(updated, snapshot, report))

        return self._reconcile(timetable_id, work)

    def apply_leave_request(self, timetable_id: str, request: LeaveRequest) -> Timetable:
        if request.status != RequestStatus.approved:
            raise ValidationError(
                f"Leave request {request.id} is {request.status.value}; only approved requests can be applied",
                details={"request_id": request.id, "status": request.status.value},
            )
        timetable = self.store.find(timetable_id)
        time_range = request.to_time_range(timetable.config)
        if time_range is None:
            logger.info("Leave request %s covers no working day; nothing to reconcile", request.id)
            return timetable
        return self.apply_leave(timetable_id, request.faculty_id, time_range)

    def apply_reschedule_request(self, timetable_id: str, request: RescheduleRequest) -> Timetable:
        if request.status != RequestStatus.approved:
            raise ValidationError(
                f"Reschedule request {request.id} is {request.status.value}; only approved requests can be applied",
                details={"request_id": request.id, "status": request.status.value},
            )
        session = self.store.find(timetable_id).session_map().get(request.session_id)
        if session is None:
            raise ResourceNotFoundError("Session", request.session_id)
        if session.faculty_id != request.faculty_id:
            raise ValidationError(
                f"Session {request.session_id} is not taught by faculty {request.faculty_id}",
                details={"session_id": request.session_id, "faculty_id": request.faculty_id},
            )
        return self.apply_reschedule(timetable_id, request.session_id, request.target)
