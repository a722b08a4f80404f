from fastapi import APIRouter, Depends, Query

from timetabler.api.deps import get_coordinator, get_engine, get_timetable_store
from timetabler.core.config import get_settings
from timetabler.schemas.conflict import ConflictReport
from timetabler.schemas.leave import (
    ApplyLeavePayload,
    ApplyReschedulePayload,
    LeaveRequest,
    RescheduleRequest,
)
from timetabler.schemas.settings import GenerationConfig
from timetabler.schemas.timetable import GenerateTimetableRequest, Timetable, TimetableStatusUpdate
from timetabler.services.reconciliation import ReconciliationCoordinator
from timetabler.services.timetable_engine import TimetableEngine
from timetabler.services.timetable_store import SqlTimetableStore

router = APIRouter()


@router.post("/generate", response_model=Timetable)
def generate_timetable(
    payload: GenerateTimetableRequest,
    engine: TimetableEngine = Depends(get_engine),
) -> Timetable:
    config = payload.config or GenerationConfig(max_duration_seconds=get_settings().generation_budget_seconds)
    return engine.generate(payload.department, payload.academic_year, payload.semester, config)


@router.get("", response_model=list[Timetable])
def list_timetables(
    department: str | None = Query(default=None),
    academic_year: str | None = Query(default=None),
    semester: int | None = Query(default=None, ge=1, le=12),
    store: SqlTimetableStore = Depends(get_timetable_store),
) -> list[Timetable]:
    return store.list(department=department, academic_year=academic_year, semester=semester)


@router.get("/{timetable_id}", response_model=Timetable)
def get_timetable(
    timetable_id: str,
    store: SqlTimetableStore = Depends(get_timetable_store),
) -> Timetable:
    return store.find(timetable_id)


@router.patch("/{timetable_id}/status", response_model=Timetable)
def update_status(
    timetable_id: str,
    payload: TimetableStatusUpdate,
    engine: TimetableEngine = Depends(get_engine),
) -> Timetable:
    return engine.transition_status(timetable_id, payload.status)


@router.get("/{timetable_id}/conflicts", response_model=ConflictReport)
def timetable_conflicts(
    timetable_id: str,
    engine: TimetableEngine = Depends(get_engine),
) -> ConflictReport:
    return engine.conflicts_for(timetable_id)


@router.post("/{timetable_id}/leaves", response_model=Timetable)
def apply_leave(
    timetable_id: str,
    payload: ApplyLeavePayload,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
) -> Timetable:
    return coordinator.apply_leave(timetable_id, payload.faculty_id, payload.time_range)


@router.post("/{timetable_id}/leave-requests", response_model=Timetable)
def apply_leave_request(
    timetable_id: str,
    payload: LeaveRequest,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
) -> Timetable:
    return coordinator.apply_leave_request(timetable_id, payload)


@router.post("/{timetable_id}/reschedules", response_model=Timetable)
def apply_reschedule(
    timetable_id: str,
    payload: ApplyReschedulePayload,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
) -> Timetable:
    return coordinator.apply_reschedule(timetable_id, payload.session_id, payload.target)


@router.post("/{timetable_id}/reschedule-requests", response_model=Timetable)
def apply_reschedule_request(
    timetable_id: str,
    payload: RescheduleRequest,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
) -> Timetable:
    return coordinator.apply_reschedule_request(timetable_id, payload)
