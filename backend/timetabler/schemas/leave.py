from __future__ import annotations

from datetime import date, timedelta
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from timetabler.schemas.settings import (
    DAY_ORDER,
    DAY_VALUES,
    TIME_PATTERN,
    GenerationConfig,
    TimeRange,
    normalize_day,
    parse_time_to_minutes,
)


class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class LeaveRequest(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)
    start_date: date
    end_date: date
    start_time: str = "09:00"
    end_time: str = "17:00"
    is_full_day: bool = True
    reason: str | None = Field(default=None, max_length=500)
    status: RequestStatus = RequestStatus.pending

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_ranges(self) -> "LeaveRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        if not self.is_full_day and parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    def to_time_range(self, config: GenerationConfig) -> TimeRange | None:
        """Weekly range covered by the leave, restricted to the configured working days."""
        covered: set[str] = set()
        current = self.start_date
        while current <= self.end_date and len(covered) < 7:
            covered.add(DAY_ORDER[current.weekday()])
            current += timedelta(days=1)
        days = [day for day in config.working_days if day in covered]
        if not days:
            return None
        if self.is_full_day:
            window = config.working_hours
            return TimeRange(days=days, start_time=window.start_time, end_time=window.end_time)
        return TimeRange(days=days, start_time=self.start_time, end_time=self.end_time)


class RescheduleTarget(BaseModel):
    day: str
    start_time: str
    classroom_id: str | None = Field(default=None, min_length=1, max_length=36)
    faculty_id: str | None = Field(default=None, min_length=1, max_length=36)

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        day = normalize_day(value)
        if day not in DAY_VALUES:
            raise ValueError("Invalid day value")
        return day

    @field_validator("start_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value


class RescheduleRequest(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)
    session_id: str = Field(min_length=1, max_length=120)
    target: RescheduleTarget
    reason: str | None = Field(default=None, max_length=500)
    status: RequestStatus = RequestStatus.pending


class ApplyLeavePayload(BaseModel):
    faculty_id: str = Field(min_length=1, max_length=36)
    time_range: TimeRange


class ApplyReschedulePayload(BaseModel):
    session_id: str = Field(min_length=1, max_length=120)
    target: RescheduleTarget
