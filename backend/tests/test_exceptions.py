from timetabler.core.exceptions import (
    ConflictError,
    InfeasibleError,
    ResourceBusyError,
    ResourceNotFoundError,
    ValidationError,
)


def test_error_taxonomy_status_codes():
    assert ValidationError("bad").status_code == 422
    assert InfeasibleError("stuck").status_code == 409
    assert ConflictError("clash", colliding_sessions=["a"]).status_code == 409
    assert ResourceBusyError("CSE|2026-2027|3").status_code == 423
    assert ResourceNotFoundError("Timetable", "t1").status_code == 404


def test_infeasible_error_details():
    error = InfeasibleError(
        "stuck",
        unplaced=["B1:CS101:2"],
        limiting_resource="classroom:R1",
        details={"timed_out": False},
    )
    assert error.details == {
        "unplaced": ["B1:CS101:2"],
        "limiting_resource": "classroom:R1",
        "timed_out": False,
    }
    assert error.message == "stuck"


def test_conflict_error_details():
    error = ConflictError("clash", colliding_sessions=["B1:CS101:0"], details={"conflicts": []})
    assert error.colliding_sessions == ["B1:CS101:0"]
    assert error.details == {"colliding_sessions": ["B1:CS101:0"], "conflicts": []}
