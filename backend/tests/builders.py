from timetabler.schemas.entities import EntitySnapshot
from timetabler.schemas.timetable import TimetableStatus
from timetabler.services.locking import KeyLockManager
from timetabler.services.reconciliation import ReconciliationCoordinator
from timetabler.services.snapshot_provider import InMemorySnapshotProvider
from timetabler.services.timetable_engine import TimetableEngine
from timetabler.services.timetable_store import InMemoryTimetableStore

DEPARTMENT = "CSE"
ACADEMIC_YEAR = "2026-2027"
SEMESTER = 3


def subject(code, sessions_per_week, **extra):
    return {
        "code": code,
        "name": f"Subject {code}",
        "department": DEPARTMENT,
        "sessions_per_week": sessions_per_week,
        **extra,
    }


def faculty(faculty_id, **extra):
    return {"id": faculty_id, "name": f"Prof {faculty_id}", "departments": [DEPARTMENT], **extra}


def classroom(classroom_id, capacity=60, room_type="lecture_hall", **extra):
    return {"id": classroom_id, "name": f"Room {classroom_id}", "type": room_type, "capacity": capacity, **extra}


def batch(batch_id, subjects, size=40, **extra):
    return {"id": batch_id, "semester": SEMESTER, "size": size, "subjects": subjects, **extra}


def snapshot_payload(*, subjects, faculty, classrooms, batches) -> dict:
    return {
        "key": {"department": DEPARTMENT, "academic_year": ACADEMIC_YEAR, "semester": SEMESTER},
        "subjects": subjects,
        "faculty": faculty,
        "classrooms": classrooms,
        "batches": batches,
    }


def build_snapshot(**entities) -> EntitySnapshot:
    return EntitySnapshot.model_validate(snapshot_payload(**entities))


class Services:
    """In-memory wiring of the engine and coordinator around one set of snapshots."""

    def __init__(self, *snapshots: EntitySnapshot, pool=None):
        self.provider = InMemorySnapshotProvider(list(snapshots))
        self.store = InMemoryTimetableStore()
        self.locks = KeyLockManager(wait_seconds=0.2)
        self.engine = TimetableEngine(self.provider, self.store, locks=self.locks, pool=pool)
        self.coordinator = ReconciliationCoordinator(
            self.provider,
            self.store,
            locks=self.locks,
            pool=pool,
            timeout_seconds=3.0,
        )

    def generate(self, config):
        return self.engine.generate(DEPARTMENT, ACADEMIC_YEAR, SEMESTER, config)

    def publish(self, config):
        timetable = self.generate(config)
        return self.engine.transition_status(timetable.id, TimetableStatus.published)
