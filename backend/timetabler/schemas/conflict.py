from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ConflictKind = Literal[
    "faculty_double_booked",
    "classroom_double_booked",
    "batch_double_booked",
    "capacity_exceeded",
    "classroom_type_mismatch",
    "facility_missing",
    "faculty_ineligible",
    "load_exceeded",
    "daily_cap_exceeded",
    "unavailable_faculty",
    "classroom_unavailable",
    "batch_blocked",
    "session_count_mismatch",
]

DOUBLE_BOOKING_KINDS: frozenset[str] = frozenset(
    {"faculty_double_booked", "classroom_double_booked", "batch_double_booked"}
)


class Conflict(BaseModel):
    model_config = {"frozen": True}

    id: str
    kind: ConflictKind
    severity: Literal["blocking", "warning"]
    description: str
    session_ids: tuple[str, ...]

    @property
    def is_blocking(self) -> bool:
        return self.severity == "blocking"

    def signature(self) -> tuple[str, tuple[str, ...]]:
        return self.kind, tuple(sorted(self.session_ids))


class ResolutionAction(BaseModel):
    action_type: Literal["move_slot", "change_classroom", "change_faculty"]
    description: str
    target_session_id: str
    parameters: dict = Field(default_factory=dict)


class ConflictReport(BaseModel):
    conflicts: list[Conflict] = Field(default_factory=list)
    suggested_resolutions: list[ResolutionAction] = Field(default_factory=list)

    @property
    def blocking(self) -> list[Conflict]:
        return [item for item in self.conflicts if item.is_blocking]
