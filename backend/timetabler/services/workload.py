from __future__ import annotations

DESIGNATION_RANKS: dict[str, int] = {
    "Adjunct": 0,
    "Lecturer": 1,
    "Assistant Professor": 2,
    "Associate Professor": 3,
    "Professor": 4,
}


def designation_rank(designation: str | None) -> int:
    if designation is None:
        return 0
    return DESIGNATION_RANKS.get(designation.strip(), 0)


def meets_min_designation(designation: str | None, minimum: str | None) -> bool:
    if minimum is None:
        return True
    return designation_rank(designation) >= designation_rank(minimum)


def designation_workload_cap(designation: str | None) -> int:
    normalized = (designation or "").strip().lower()
    if "assistant professor" in normalized:
        return 18
    if "associate professor" in normalized:
        return 16
    if "professor" in normalized:
        return 14
    return 20


def weekly_load_limit_minutes(designation: str | None, requested_hours: int | None) -> int:
    """Effective weekly teaching cap in minutes; the designation cap bounds any requested limit."""
    cap = designation_workload_cap(designation)
    if requested_hours is None:
        return cap * 60
    if requested_hours < 0:
        return 0
    return min(requested_hours, cap) * 60
