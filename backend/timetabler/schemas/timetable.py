from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from timetabler.schemas.conflict import Conflict
from timetabler.schemas.entities import SchedulingKey, SubjectType
from timetabler.schemas.settings import (
    DAY_ORDER,
    DAY_VALUES,
    TIME_PATTERN,
    DayWindow,
    GenerationConfig,
    normalize_day,
    parse_time_to_minutes,
)


class TimetableStatus(str, Enum):
    draft = "draft"
    generated = "generated"
    published = "published"
    reconciling = "reconciling"
    archived = "archived"


ALLOWED_STATUS_TRANSITIONS: dict[TimetableStatus, set[TimetableStatus]] = {
    TimetableStatus.draft: {TimetableStatus.generated},
    TimetableStatus.generated: {TimetableStatus.published, TimetableStatus.archived},
    TimetableStatus.published: {TimetableStatus.reconciling, TimetableStatus.archived},
    TimetableStatus.reconciling: {TimetableStatus.published},
    TimetableStatus.archived: set(),
}


def session_id_for(batch_id: str, subject_code: str, index: int) -> str:
    return f"{batch_id}:{subject_code}:{index}"


class ScheduledSession(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(min_length=1, max_length=120)
    subject_code: str = Field(min_length=1, max_length=50)
    batch_id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)
    classroom_id: str = Field(min_length=1, max_length=36)
    day: str
    start_time: str
    end_time: str
    session_index: int = Field(ge=0)
    session_type: SubjectType = SubjectType.theory

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        day = normalize_day(value)
        if day not in DAY_VALUES:
            raise ValueError("Invalid day value")
        return day

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_time_order(self) -> "ScheduledSession":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time)

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    def overlaps(self, other: "ScheduledSession") -> bool:
        return (
            self.day == other.day
            and self.start_minutes < other.end_minutes
            and other.start_minutes < self.end_minutes
        )

    def sort_key(self) -> tuple:
        return (DAY_ORDER.index(self.day), self.start_minutes, self.batch_id, self.subject_code, self.session_index)


class ScoreBreakdown(BaseModel):
    utilization: float = Field(ge=0.0, le=1.0)
    balance: float = Field(ge=0.0, le=1.0)
    blocking_conflicts: int = Field(ge=0)
    warning_conflicts: int = Field(ge=0)
    conflict_penalty: float = Field(ge=0.0)


class TimetableStatistics(BaseModel):
    total_sessions: int = 0
    sessions_by_day: dict[str, int] = Field(default_factory=dict)
    faculty_hours: dict[str, float] = Field(default_factory=dict)
    classroom_utilization: dict[str, float] = Field(default_factory=dict)


class Timetable(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    key: SchedulingKey
    status: TimetableStatus = TimetableStatus.draft
    sessions: list[ScheduledSession] = Field(default_factory=list)
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    score_breakdown: ScoreBreakdown | None = None
    statistics: TimetableStatistics = Field(default_factory=TimetableStatistics)
    conflicts: list[Conflict] = Field(default_factory=list)
    config: GenerationConfig = Field(default_factory=GenerationConfig)
    faculty_unavailability: dict[str, list[DayWindow]] = Field(default_factory=dict)
    version: int = Field(default=1, ge=1)
    generation_ms: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def session_map(self) -> dict[str, ScheduledSession]:
        return {item.id: item for item in self.sessions}


class GenerateTimetableRequest(BaseModel):
    department: str = Field(min_length=1, max_length=200)
    academic_year: str = Field(min_length=1, max_length=20)
    semester: int = Field(ge=1, le=12)
    config: GenerationConfig | None = None


class TimetableStatusUpdate(BaseModel):
    status: TimetableStatus


class DetectConflictsRequest(BaseModel):
    department: str = Field(min_length=1, max_length=200)
    academic_year: str = Field(min_length=1, max_length=20)
    semester: int = Field(ge=1, le=12)
    sessions: list[ScheduledSession] = Field(default_factory=list)
    config: GenerationConfig | None = None
