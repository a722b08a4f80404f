from fastapi import APIRouter, Depends

from timetabler.api.deps import get_engine
from timetabler.schemas.conflict import ConflictReport
from timetabler.schemas.settings import GenerationConfig
from timetabler.schemas.timetable import DetectConflictsRequest
from timetabler.services.timetable_engine import TimetableEngine

router = APIRouter()


@router.post("/detect", response_model=ConflictReport)
def detect_conflicts(
    payload: DetectConflictsRequest,
    engine: TimetableEngine = Depends(get_engine),
) -> ConflictReport:
    return engine.detect(
        payload.department,
        payload.academic_year,
        payload.semester,
        payload.sessions,
        payload.config or GenerationConfig(),
    )
