import pytest

from builders import ACADEMIC_YEAR, DEPARTMENT, SEMESTER, Services
from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.schemas.entities import SchedulingKey
from timetabler.schemas.timetable import TimetableStatus
from timetabler.services.snapshot_provider import InMemorySnapshotProvider, SqlSnapshotProvider
from timetabler.services.timetable_store import InMemoryTimetableStore, SqlTimetableStore

KEY = SchedulingKey(department=DEPARTMENT, academic_year=ACADEMIC_YEAR, semester=SEMESTER)


@pytest.fixture()
def generated(grid_config, single_subject_snapshot):
    return Services(single_subject_snapshot).generate(grid_config)


def test_in_memory_store_returns_copies(generated):
    store = InMemoryTimetableStore()
    store.put(KEY, generated)
    loaded = store.get(KEY)
    loaded.sessions.clear()
    assert len(store.get(KEY).sessions) == 3
    assert store.find(generated.id).id == generated.id
    assert [item.id for item in store.list(department=DEPARTMENT)] == [generated.id]
    assert store.list(semester=SEMESTER + 1) == []
    with pytest.raises(ResourceNotFoundError):
        store.find("missing")


def test_sql_store_round_trip(db_session_factory, generated):
    db = db_session_factory()
    try:
        store = SqlTimetableStore(db)
        store.put(KEY, generated)
        loaded = store.get(KEY)
        assert loaded.id == generated.id
        assert loaded.sessions == generated.sessions
        assert loaded.score == generated.score
        assert store.find(generated.id).sessions == generated.sessions

        published = generated.model_copy(update={"status": TimetableStatus.published, "version": 2})
        store.put(KEY, published)
        assert store.get(KEY).status == TimetableStatus.published
        assert store.get(KEY).version == 2
        assert len(store.list(department=DEPARTMENT, academic_year=ACADEMIC_YEAR)) == 1
        assert store.list(department="ECE") == []
    finally:
        db.close()


def test_sql_store_missing_records(db_session_factory):
    db = db_session_factory()
    try:
        store = SqlTimetableStore(db)
        with pytest.raises(ResourceNotFoundError):
            store.get(KEY)
        with pytest.raises(ResourceNotFoundError):
            store.find("missing")
    finally:
        db.close()


def test_snapshot_providers(db_session_factory, single_subject_snapshot):
    memory = InMemorySnapshotProvider([single_subject_snapshot])
    assert memory.get_snapshot(DEPARTMENT, ACADEMIC_YEAR, SEMESTER) == single_subject_snapshot
    with pytest.raises(ResourceNotFoundError):
        memory.get_snapshot("ECE", ACADEMIC_YEAR, SEMESTER)

    db = db_session_factory()
    try:
        sql = SqlSnapshotProvider(db)
        with pytest.raises(ResourceNotFoundError):
            sql.get_snapshot(DEPARTMENT, ACADEMIC_YEAR, SEMESTER)
        sql.save(single_subject_snapshot)
        sql.save(single_subject_snapshot)
        assert sql.get_snapshot(DEPARTMENT, ACADEMIC_YEAR, SEMESTER) == single_subject_snapshot
    finally:
        db.close()
