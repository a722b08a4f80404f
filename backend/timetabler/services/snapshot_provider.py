from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.models.entity_snapshot import EntitySnapshotRecord
from timetabler.schemas.entities import EntitySnapshot, SchedulingKey

logger = logging.getLogger(__name__)


class SnapshotProvider(Protocol):
    def get_snapshot(self, department: str, academic_year: str, semester: int) -> EntitySnapshot:
        ...


class InMemorySnapshotProvider:
    def __init__(self, snapshots: list[EntitySnapshot] | None = None) -> None:
        self._snapshots: dict[SchedulingKey, EntitySnapshot] = {}
        self._lock = Lock()
        for snapshot in snapshots or []:
            self.save(snapshot)

    def save(self, snapshot: EntitySnapshot) -> EntitySnapshot:
        with self._lock:
            self._snapshots[snapshot.key] = snapshot
        return snapshot

    def get_snapshot(self, department: str, academic_year: str, semester: int) -> EntitySnapshot:
        key = SchedulingKey(department=department, academic_year=academic_year, semester=semester)
        with self._lock:
            snapshot = self._snapshots.get(key)
        if snapshot is None:
            raise ResourceNotFoundError("Entity snapshot", key.as_string())
        return snapshot


class SqlSnapshotProvider:
    """Reads and registers snapshots stored as one JSON payload per scheduling key."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _record(self, key: SchedulingKey) -> EntitySnapshotRecord | None:
        return self.db.execute(
            select(EntitySnapshotRecord).where(
                EntitySnapshotRecord.department == key.department,
                EntitySnapshotRecord.academic_year == key.academic_year,
                EntitySnapshotRecord.semester == key.semester,
            )
        ).scalar_one_or_none()

    def save(self, snapshot: EntitySnapshot) -> EntitySnapshot:
        payload = snapshot.model_dump(mode="json")
        record = self._record(snapshot.key)
        if record is None:
            record = EntitySnapshotRecord(
                department=snapshot.key.department,
                academic_year=snapshot.key.academic_year,
                semester=snapshot.key.semester,
                payload=payload,
            )
            self.db.add(record)
        else:
            record.payload = payload
        self.db.commit()
        logger.info(
            "Entity snapshot saved key=%s subjects=%s faculty=%s classrooms=%s batches=%s",
            snapshot.key.as_string(),
            len(snapshot.subjects),
            len(snapshot.faculty),
            len(snapshot.classrooms),
            len(snapshot.batches),
        )
        return snapshot

    def get_snapshot(self, department: str, academic_year: str, semester: int) -> EntitySnapshot:
        key = SchedulingKey(department=department, academic_year=academic_year, semester=semester)
        record = self._record(key)
        if record is None:
            raise ResourceNotFoundError("Entity snapshot", key.as_string())
        return EntitySnapshot.model_validate(record.payload)
