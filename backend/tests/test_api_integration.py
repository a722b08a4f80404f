from builders import ACADEMIC_YEAR, DEPARTMENT, SEMESTER, batch, classroom, faculty, snapshot_payload, subject

CONFIG = {
    "working_hours": {"start_time": "09:00", "end_time": "15:00"},
    "lunch_break": None,
    "max_duration_seconds": 10,
}
KEY_PARAMS = {"department": DEPARTMENT, "academic_year": ACADEMIC_YEAR, "semester": SEMESTER}


def put_snapshot(client, **entities):
    payload = snapshot_payload(
        subjects=entities.get("subjects", [subject("CS101", 3)]),
        faculty=entities.get("faculty", [faculty("F1")]),
        classrooms=entities.get("classrooms", [classroom("R1")]),
        batches=entities.get("batches", [batch("B1", ["CS101"])]),
    )
    response = client.put("/api/snapshots", json=payload)
    assert response.status_code == 200
    return response.json()


def generate(client, config=CONFIG):
    return client.post("/api/timetables/generate", json={**KEY_PARAMS, "config": config})


def test_snapshot_registration_and_lookup(client):
    missing = client.get("/api/snapshots", params=KEY_PARAMS)
    assert missing.status_code == 404
    assert "not found" in missing.json()["message"]

    stored = put_snapshot(client)
    assert stored["key"] == KEY_PARAMS
    loaded = client.get("/api/snapshots", params=KEY_PARAMS)
    assert loaded.status_code == 200
    assert [item["code"] for item in loaded.json()["subjects"]] == ["CS101"]


def test_invalid_snapshot_is_rejected(client):
    payload = snapshot_payload(
        subjects=[subject("CS101", 3)],
        faculty=[faculty("F1")],
        classrooms=[classroom("R1")],
        batches=[batch("B1", ["CS999"])],
    )
    assert client.put("/api/snapshots", json=payload).status_code == 422


def test_generate_publish_and_reconcile(client):
    put_snapshot(client)

    response = generate(client)
    assert response.status_code == 200
    timetable = response.json()
    assert timetable["status"] == "generated"
    assert len(timetable["sessions"]) == 3
    assert timetable["conflicts"] == []
    timetable_id = timetable["id"]

    early_leave = client.post(
        f"/api/timetables/{timetable_id}/leaves",
        json={"faculty_id": "F1", "time_range": {"days": ["Friday"], "start_time": "09:00", "end_time": "15:00"}},
    )
    assert early_leave.status_code == 422

    invalid = client.patch(f"/api/timetables/{timetable_id}/status", json={"status": "reconciling"})
    assert invalid.status_code == 422
    assert invalid.json()["details"] == {"from": "generated", "to": "reconciling"}

    published = client.patch(f"/api/timetables/{timetable_id}/status", json={"status": "published"})
    assert published.status_code == 200
    assert published.json()["status"] == "published"
    assert published.json()["version"] == 2

    listed = client.get("/api/timetables", params={"department": DEPARTMENT})
    assert [item["id"] for item in listed.json()] == [timetable_id]
    assert client.get("/api/timetables", params={"department": "ECE"}).json() == []

    report = client.get(f"/api/timetables/{timetable_id}/conflicts")
    assert report.status_code == 200
    assert report.json()["conflicts"] == []

    sessions = sorted(published.json()["sessions"], key=lambda item: item["session_index"])
    moving, occupied = sessions[1], sessions[0]
    clash = client.post(
        f"/api/timetables/{timetable_id}/reschedules",
        json={"session_id": moving["id"], "target": {"day": occupied["day"], "start_time": occupied["start_time"]}},
    )
    assert clash.status_code == 409
    assert clash.json()["details"]["colliding_sessions"] == [occupied["id"]]
    assert client.get(f"/api/timetables/{timetable_id}").json()["status"] == "published"

    moved = client.post(
        f"/api/timetables/{timetable_id}/reschedules",
        json={"session_id": moving["id"], "target": {"day": "Thursday", "start_time": "10:00"}},
    )
    assert moved.status_code == 200
    body = moved.json()
    assert body["version"] == 3
    assert body["status"] == "published"
    relocated = next(item for item in body["sessions"] if item["id"] == moving["id"])
    assert (relocated["day"], relocated["start_time"], relocated["end_time"]) == ("Thursday", "10:00", "11:00")

    # F1 is the only faculty, so a leave over a taught slot cannot be absorbed.
    blocked = client.post(
        f"/api/timetables/{timetable_id}/leaves",
        json={
            "faculty_id": "F1",
            "time_range": {"days": [occupied["day"]], "start_time": "09:00", "end_time": "15:00"},
        },
    )
    assert blocked.status_code == 409
    assert blocked.json()["details"]["limiting_resource"] == "faculty:F1"
    assert blocked.json()["details"]["unplaced"] == [occupied["id"]]

    friday = client.post(
        f"/api/timetables/{timetable_id}/leaves",
        json={"faculty_id": "F1", "time_range": {"days": ["Friday"], "start_time": "09:00", "end_time": "15:00"}},
    )
    assert friday.status_code == 200
    assert friday.json()["version"] == 4
    assert [window["day"] for window in friday.json()["faculty_unavailability"]["F1"]] == ["Friday"]


def test_leave_request_moves_sessions_to_another_faculty(client):
    put_snapshot(client, faculty=[faculty("F1"), faculty("F2")])
    timetable = generate(client).json()
    timetable_id = timetable["id"]
    client.patch(f"/api/timetables/{timetable_id}/status", json={"status": "published"})
    absent = "F1"
    assert absent in {item["faculty_id"] for item in timetable["sessions"]}

    # 2026-10-19 is a Monday; the leave covers the whole working week.
    request = {
        "id": "leave-1",
        "faculty_id": absent,
        "start_date": "2026-10-19",
        "end_date": "2026-10-23",
        "status": "approved",
    }
    response = client.post(f"/api/timetables/{timetable_id}/leave-requests", json=request)
    assert response.status_code == 200
    assert {item["faculty_id"] for item in response.json()["sessions"]} == {"F2"}
    assert len(response.json()["sessions"]) == 3

    pending = client.post(
        f"/api/timetables/{timetable_id}/leave-requests",
        json={**request, "id": "leave-2", "status": "pending"},
    )
    assert pending.status_code == 422


def test_reschedule_request_checks_faculty(client):
    put_snapshot(client)
    timetable_id = generate(client).json()["id"]
    published = client.patch(f"/api/timetables/{timetable_id}/status", json={"status": "published"}).json()
    session = published["sessions"][0]

    request = {
        "id": "move-1",
        "faculty_id": "F9",
        "session_id": session["id"],
        "target": {"day": "Friday", "start_time": "14:00"},
        "status": "approved",
    }
    wrong = client.post(f"/api/timetables/{timetable_id}/reschedule-requests", json=request)
    assert wrong.status_code == 422

    right = client.post(f"/api/timetables/{timetable_id}/reschedule-requests", json={**request, "faculty_id": "F1"})
    assert right.status_code == 200
    moved = next(item for item in right.json()["sessions"] if item["id"] == session["id"])
    assert (moved["day"], moved["start_time"]) == ("Friday", "14:00")


def test_infeasible_generation_reports_limiting_resource(client):
    put_snapshot(
        client,
        subjects=[subject("CS101", 10), subject("CS102", 10), subject("CS103", 10), subject("CS104", 10)],
        batches=[batch("B1", ["CS101", "CS102"]), batch("B2", ["CS103", "CS104"])],
        faculty=[faculty("F1", weekly_load_limit=60), faculty("F2", weekly_load_limit=60)],
    )
    response = generate(client)
    assert response.status_code == 409
    details = response.json()["details"]
    assert details["limiting_resource"] == "classroom:R1"
    assert details["unplaced"]


def test_unknown_resources(client):
    assert client.get("/api/timetables/missing").status_code == 404
    assert generate(client).status_code == 404
    assert client.post("/api/timetables/generate", json={**KEY_PARAMS, "semester": 0}).status_code == 422


def test_detect_conflicts_endpoint(client):
    put_snapshot(client)
    sessions = [
        {
            "id": "B1:CS101:0",
            "subject_code": "CS101",
            "batch_id": "B1",
            "faculty_id": "F1",
            "classroom_id": "R1",
            "day": "Monday",
            "start_time": "09:00",
            "end_time": "10:00",
            "session_index": 0,
        },
        {
            "id": "B1:CS101:1",
            "subject_code": "CS101",
            "batch_id": "B1",
            "faculty_id": "F1",
            "classroom_id": "R1",
            "day": "Monday",
            "start_time": "09:30",
            "end_time": "10:30",
            "session_index": 1,
        },
    ]
    response = client.post("/api/conflicts/detect", json={**KEY_PARAMS, "sessions": sessions, "config": CONFIG})
    assert response.status_code == 200
    kinds = {item["kind"] for item in response.json()["conflicts"]}
    assert {"batch_double_booked", "classroom_double_booked", "faculty_double_booked"} <= kinds
    assert "session_count_mismatch" in kinds
