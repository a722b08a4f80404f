from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.models.timetable import TimetableRecord
from timetabler.schemas.entities import SchedulingKey
from timetabler.schemas.timetable import Timetable

logger = logging.getLogger(__name__)


class TimetableStore(Protocol):
    def get(self, key: SchedulingKey) -> Timetable:
        ...

    def put(self, key: SchedulingKey, timetable: Timetable) -> Timetable:
        ...

    def find(self, timetable_id: str) -> Timetable:
        ...

    def list(
        self,
        *,
        department: str | None = None,
        academic_year: str | None = None,
        semester: int | None = None,
    ) -> list[Timetable]:
        ...


def _matches(key: SchedulingKey, department: str | None, academic_year: str | None, semester: int | None) -> bool:
    if department is not None and key.department != department:
        return False
    if academic_year is not None and key.academic_year != academic_year:
        return False
    return semester is None or key.semester == semester


class InMemoryTimetableStore:
    """Lock-guarded store keeping one timetable per scheduling key."""

    def __init__(self) -> None:
        self._items: dict[SchedulingKey, Timetable] = {}
        self._lock = Lock()

    def get(self, key: SchedulingKey) -> Timetable:
        with self._lock:
            timetable = self._items.get(key)
        if timetable is None:
            raise ResourceNotFoundError("Timetable", key.as_string())
        return timetable.model_copy(deep=True)

    def put(self, key: SchedulingKey, timetable: Timetable) -> Timetable:
        stored = timetable.model_copy(deep=True)
        with self._lock:
            self._items[key] = stored
        return stored.model_copy(deep=True)

    def find(self, timetable_id: str) -> Timetable:
        with self._lock:
            match = next((item for item in self._items.values() if item.id == timetable_id), None)
        if match is None:
            raise ResourceNotFoundError("Timetable", timetable_id)
        return match.model_copy(deep=True)

    def list(
        self,
        *,
        department: str | None = None,
        academic_year: str | None = None,
        semester: int | None = None,
    ) -> list[Timetable]:
        with self._lock:
            items = [
                item.model_copy(deep=True)
                for key, item in self._items.items()
                if _matches(key, department, academic_year, semester)
            ]
        return sorted(items, key=lambda item: (item.key.department, item.key.academic_year, item.key.semester))


class SqlTimetableStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def _to_timetable(record: TimetableRecord) -> Timetable:
        return Timetable.model_validate(record.payload)

    def _record_for_key(self, key: SchedulingKey) -> TimetableRecord | None:
        return self.db.execute(
            select(TimetableRecord).where(
                TimetableRecord.department == key.department,
                TimetableRecord.academic_year == key.academic_year,
                TimetableRecord.semester == key.semester,
            )
        ).scalar_one_or_none()

    def get(self, key: SchedulingKey) -> Timetable:
        record = self._record_for_key(key)
        if record is None:
            raise ResourceNotFoundError("Timetable", key.as_string())
        return self._to_timetable(record)

    def put(self, key: SchedulingKey, timetable: Timetable) -> Timetable:
        payload = timetable.model_dump(mode="json")
        record = self._record_for_key(key)
        try:
            if record is not None and record.id != timetable.id:
                self.db.delete(record)
                self.db.flush()
                record = None
            if record is None:
                record = TimetableRecord(
                    id=timetable.id,
                    department=key.department,
                    academic_year=key.academic_year,
                    semester=key.semester,
                )
                self.db.add(record)
            record.status = timetable.status.value
            record.score = timetable.score
            record.version = timetable.version
            record.payload = payload
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Timetable stored id=%s key=%s status=%s version=%s",
            timetable.id,
            key.as_string(),
            timetable.status.value,
            timetable.version,
        )
        return timetable

    def find(self, timetable_id: str) -> Timetable:
        record = self.db.get(TimetableRecord, timetable_id)
        if record is None:
            raise ResourceNotFoundError("Timetable", timetable_id)
        return self._to_timetable(record)

    def list(
        self,
        *,
        department: str | None = None,
        academic_year: str | None = None,
        semester: int | None = None,
    ) -> list[Timetable]:
        query = select(TimetableRecord)
        if department is not None:
            query = query.where(TimetableRecord.department == department)
        if academic_year is not None:
            query = query.where(TimetableRecord.academic_year == academic_year)
        if semester is not None:
            query = query.where(TimetableRecord.semester == semester)
        query = query.order_by(TimetableRecord.department, TimetableRecord.academic_year, TimetableRecord.semester)
        return [self._to_timetable(record) for record in self.db.execute(query).scalars()]
