from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator, model_validator

DAY_ORDER = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
DAY_VALUES = set(DAY_ORDER)

DAY_SHORT_MAP = {
    "Mon": "Monday",
    "Tue": "Tuesday",
    "Wed": "Wednesday",
    "Thu": "Thursday",
    "Fri": "Friday",
    "Sat": "Saturday",
    "Sun": "Sunday",
}

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

DEFAULT_ROOM_TYPE_COMPATIBILITY: dict[str, list[str]] = {
    "lecture_hall": ["auditorium"],
    "seminar_room": ["lecture_hall"],
    "tutorial_room": ["seminar_room", "lecture_hall"],
    "laboratory": [],
    "computer_lab": [],
    "auditorium": [],
}


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(value: int) -> str:
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}"


def normalize_day(value: str) -> str:
    day = value.strip()
    day = DAY_SHORT_MAP.get(day, day)
    if day.lower() in {item.lower() for item in DAY_ORDER}:
        return day.capitalize()
    return day


def _validate_day(value: str) -> str:
    day = normalize_day(value)
    if day not in DAY_VALUES:
        raise ValueError(f"Invalid day value: {value}")
    return day


def _validate_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    return value


class TimeWindow(BaseModel):
    model_config = {"frozen": True}

    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _validate_time(value)

    @model_validator(mode="after")
    def validate_time_order(self) -> "TimeWindow":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time)

    def overlaps_minutes(self, start: int, end: int) -> bool:
        return start < self.end_minutes and self.start_minutes < end


class DayWindow(TimeWindow):
    """A time window pinned to one weekday (blocked slot, maintenance, leave)."""

    day: str
    reason: str | None = Field(default=None, max_length=300)

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return _validate_day(value)

    def overlaps(self, day: str, start: int, end: int) -> bool:
        return self.day == day and self.overlaps_minutes(start, end)


class TimeRange(TimeWindow):
    """A weekly time range spanning one or more days, used for leave windows."""

    days: list[str] = Field(min_length=1, max_length=7)

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: list[str]) -> list[str]:
        cleaned = [_validate_day(day) for day in value]
        return [day for day in DAY_ORDER if day in set(cleaned)]

    def overlaps(self, day: str, start: int, end: int) -> bool:
        return day in self.days and self.overlaps_minutes(start, end)

    def day_windows(self, reason: str | None = None) -> list[DayWindow]:
        return [
            DayWindow(day=day, start_time=self.start_time, end_time=self.end_time, reason=reason)
            for day in self.days
        ]


class ScoreWeights(BaseModel):
    utilization: float = Field(default=0.6, ge=0.0, le=1.0)
    balance: float = Field(default=0.4, ge=0.0, le=1.0)
    blocking_penalty: float = Field(default=25.0, ge=0.0, le=100.0)
    warning_penalty: float = Field(default=2.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def validate_positive_mix(self) -> "ScoreWeights":
        if self.utilization + self.balance <= 0:
            raise ValueError("utilization and balance weights cannot both be zero")
        return self


class GenerationConfig(BaseModel):
    """Per-run scheduling configuration, passed explicitly into every entry point."""

    model_config = {"frozen": True}

    working_days: list[str] = Field(
        default_factory=lambda: ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"],
        min_length=1,
        max_length=7,
    )
    working_hours: TimeWindow = Field(default_factory=lambda: TimeWindow(start_time="09:00", end_time="17:00"))
    lunch_break: TimeWindow | None = Field(default_factory=lambda: TimeWindow(start_time="12:30", end_time="13:30"))
    slot_granularity: int = Field(default=60, ge=5, le=240)
    max_sessions_per_day: int = Field(default=8, ge=1, le=24)
    backtrack_limit: int | None = Field(default=None, ge=0)
    backtrack_factor: int = Field(default=20, ge=1, le=10_000)
    max_duration_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)
    relaxed_matching: bool = False
    room_type_compatibility: dict[str, list[str]] = Field(
        default_factory=lambda: {key: list(value) for key, value in DEFAULT_ROOM_TYPE_COMPATIBILITY.items()}
    )
    score_weights: ScoreWeights = Field(default_factory=ScoreWeights)

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: list[str]) -> list[str]:
        days = [_validate_day(day) for day in value]
        duplicates = sorted({day for day in days if days.count(day) > 1})
        if duplicates:
            raise ValueError(f"Duplicate working day(s): {', '.join(duplicates)}")
        return days

    @model_validator(mode="after")
    def validate_lunch_inside_hours(self) -> "GenerationConfig":
        if self.lunch_break is None:
            return self
        hours = self.working_hours
        if self.lunch_break.start_minutes < hours.start_minutes or self.lunch_break.end_minutes > hours.end_minutes:
            raise ValueError("Lunch break must lie inside the working-hour window")
        return self

    def effective_backtrack_limit(self, unit_count: int) -> int:
        if self.backtrack_limit is not None:
            return self.backtrack_limit
        return self.backtrack_factor * max(1, unit_count)

    def compatible_room_types(self, required: str) -> set[str]:
        return {required, *self.room_type_compatibility.get(required, [])}
