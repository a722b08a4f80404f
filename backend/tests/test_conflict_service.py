import pytest

from builders import batch, build_snapshot, classroom, faculty, subject
from timetabler.schemas.settings import DayWindow
from timetabler.schemas.timetable import ScheduledSession
from timetabler.services.conflict_service import ConflictService


def session(batch_id, code, faculty_id, classroom_id, day="Monday", start="09:00", end="10:00", index=0):
    return ScheduledSession(
        id=f"{batch_id}:{code}:{index}",
        subject_code=code,
        batch_id=batch_id,
        faculty_id=faculty_id,
        classroom_id=classroom_id,
        day=day,
        start_time=start,
        end_time=end,
        session_index=index,
    )


@pytest.fixture
def snapshot():
    return build_snapshot(
        subjects=[subject("CS101", 1), subject("CS102", 1)],
        faculty=[faculty("F1"), faculty("F2")],
        classrooms=[classroom("R1", capacity=60), classroom("R2", capacity=30)],
        batches=[batch("B1", ["CS101", "CS102"]), batch("B2", ["CS101"], size=25)],
    )


def kinds(report):
    return [item.kind for item in report.conflicts]


def test_clean_timetable_has_no_conflicts(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R1"),
        session("B1", "CS102", "F1", "R1", start="10:00", end="11:00"),
        session("B2", "CS101", "F2", "R2"),
    ]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    assert report.conflicts == []
    assert report.suggested_resolutions == []


def test_detect_classroom_conflict(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R1"),
        session("B1", "CS102", "F1", "R1", day="Tuesday"),
        session("B2", "CS101", "F2", "R1", start="09:30", end="10:30"),
    ]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    assert kinds(report) == ["classroom_double_booked"]
    conflict = report.conflicts[0]
    assert conflict.is_blocking
    assert set(conflict.session_ids) == {"B1:CS101:0", "B2:CS101:0"}
    assert "Room R1" in conflict.description
    assert [item.action_type for item in report.suggested_resolutions] == ["change_classroom"]


def test_detect_faculty_and_batch_conflicts(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R1"),
        session("B1", "CS102", "F1", "R2", start="09:00", end="10:00"),
        session("B2", "CS101", "F2", "R2", day="Friday"),
    ]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    # R2 holds 30 for a batch of 40.
    assert sorted(kinds(report)) == ["batch_double_booked", "capacity_exceeded", "faculty_double_booked"]
    assert {item.action_type for item in report.suggested_resolutions} == {"move_slot", "change_classroom"}


def test_back_to_back_sessions_do_not_overlap(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R1", start="09:00", end="10:00"),
        session("B1", "CS102", "F1", "R1", start="10:00", end="11:00"),
        session("B2", "CS101", "F2", "R2"),
    ]
    assert ConflictService(sessions, snapshot, grid_config).detect_conflicts().conflicts == []


def test_matching_conflicts_are_warnings_when_relaxed(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R2"),
        session("B1", "CS102", "F1", "R1", start="10:00", end="11:00"),
        session("B2", "CS101", "F2", "R2", day="Friday"),
    ]
    strict = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    assert [(item.kind, item.severity) for item in strict.conflicts] == [("capacity_exceeded", "blocking")]

    relaxed_config = grid_config.model_copy(update={"relaxed_matching": True})
    relaxed = ConflictService(sessions, snapshot, relaxed_config).detect_conflicts()
    assert [(item.kind, item.severity) for item in relaxed.conflicts] == [("capacity_exceeded", "warning")]
    assert relaxed.blocking == []


def test_faculty_eligibility_and_facilities(grid_config):
    snapshot = build_snapshot(
        subjects=[
            subject(
                "CS201",
                1,
                classroom_requirement={"type": "computer_lab", "facilities": ["gpu"]},
                faculty_requirement={"specializations": ["ml"], "min_designation": "Associate Professor"},
            )
        ],
        faculty=[faculty("F1", specializations=["databases"])],
        classrooms=[classroom("R1")],
        batches=[batch("B1", ["CS201"])],
    )
    report = ConflictService([session("B1", "CS201", "F1", "R1")], snapshot, grid_config).detect_conflicts()
    assert sorted(kinds(report)) == ["classroom_type_mismatch", "facility_missing", "faculty_ineligible"]
    ineligible = next(item for item in report.conflicts if item.kind == "faculty_ineligible")
    assert "no matching specialization" in ineligible.description
    assert "designation below Associate Professor" in ineligible.description
    assert "change_faculty" in {item.action_type for item in report.suggested_resolutions}


def test_unavailable_faculty_is_blocking(snapshot, grid_config):
    sessions = [
        session("B1", "CS101", "F1", "R1"),
        session("B1", "CS102", "F1", "R1", day="Tuesday"),
        session("B2", "CS101", "F2", "R2", day="Friday"),
    ]
    unavailability = {"F1": [DayWindow(day="Tuesday", start_time="09:00", end_time="12:00", reason="leave")]}
    report = ConflictService(sessions, snapshot, grid_config, unavailability).detect_conflicts()
    assert [(item.kind, item.session_ids) for item in report.conflicts] == [
        ("unavailable_faculty", ("B1:CS102:0",))
    ]
    assert "(leave)" in report.conflicts[0].description


def test_load_and_daily_caps(grid_config):
    snapshot = build_snapshot(
        subjects=[subject("CS101", 3)],
        faculty=[faculty("F1", weekly_load_limit=2, max_sessions_per_day=2)],
        classrooms=[classroom("R1")],
        batches=[batch("B1", ["CS101"], max_sessions_per_day=2)],
    )
    sessions = [
        session("B1", "CS101", "F1", "R1", start="09:00", end="10:00", index=0),
        session("B1", "CS101", "F1", "R1", start="10:00", end="11:00", index=1),
        session("B1", "CS101", "F1", "R1", start="11:00", end="12:00", index=2),
    ]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    assert sorted(item.id for item in report.conflicts) == [
        "daily-batch-B1-Monday",
        "daily-faculty-F1-Monday",
        "load-F1",
    ]
    assert all(item.is_blocking for item in report.conflicts)


def test_session_count_mismatch(snapshot, grid_config):
    sessions = [session("B1", "CS101", "F1", "R1")]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    mismatches = {item.id: item.session_ids for item in report.conflicts}
    assert mismatches == {"count-B1-CS102": (), "count-B2-CS101": ()}
    assert all(item.kind == "session_count_mismatch" for item in report.conflicts)


def test_classroom_maintenance_and_batch_blocks_are_blocking(grid_config):
    snapshot = build_snapshot(
        subjects=[subject("CS101", 2)],
        faculty=[faculty("F1")],
        classrooms=[
            classroom(
                "R1",
                unavailable=[{"day": "Thursday", "start_time": "09:00", "end_time": "12:00", "reason": "maintenance"}],
            )
        ],
        batches=[batch("B1", ["CS101"], blocked=[{"day": "Friday", "start_time": "13:00", "end_time": "15:00"}])],
    )
    sessions = [
        session("B1", "CS101", "F1", "R1", day="Thursday", start="11:00", end="12:00", index=0),
        session("B1", "CS101", "F1", "R1", day="Friday", start="14:00", end="15:00", index=1),
    ]
    report = ConflictService(sessions, snapshot, grid_config).detect_conflicts()
    assert [(item.kind, item.session_ids) for item in report.conflicts] == [
        ("batch_blocked", ("B1:CS101:1",)),
        ("classroom_unavailable", ("B1:CS101:0",)),
    ]
    assert all(item.is_blocking for item in report.conflicts)
    assert "(maintenance)" in report.conflicts[1].description
    assert {(item.action_type, item.target_session_id) for item in report.suggested_resolutions} == {
        ("move_slot", "B1:CS101:1"),
        ("change_classroom", "B1:CS101:0"),
    }

    clear = [
        session("B1", "CS101", "F1", "R1", day="Thursday", start="12:00", end="13:00", index=0),
        session("B1", "CS101", "F1", "R1", day="Friday", start="12:00", end="13:00", index=1),
    ]
    assert ConflictService(clear, snapshot, grid_config).detect_conflicts().conflicts == []
