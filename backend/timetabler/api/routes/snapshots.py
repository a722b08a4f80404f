from fastapi import APIRouter, Depends

from timetabler.api.deps import get_snapshot_provider
from timetabler.schemas.entities import EntitySnapshot
from timetabler.services.snapshot_provider import SqlSnapshotProvider

router = APIRouter()


@router.put("", response_model=EntitySnapshot)
def put_snapshot(
    payload: EntitySnapshot,
    snapshots: SqlSnapshotProvider = Depends(get_snapshot_provider),
) -> EntitySnapshot:
    return snapshots.save(payload)


@router.get("", response_model=EntitySnapshot)
def get_snapshot(
    department: str,
    academic_year: str,
    semester: int,
    snapshots: SqlSnapshotProvider = Depends(get_snapshot_provider),
) -> EntitySnapshot:
    return snapshots.get_snapshot(department, academic_year, semester)
