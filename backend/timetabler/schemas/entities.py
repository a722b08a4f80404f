from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from timetabler.schemas.settings import DayWindow
from timetabler.services.workload import DESIGNATION_RANKS


class SubjectType(str, Enum):
    theory = "theory"
    lab = "lab"
    tutorial = "tutorial"
    seminar = "seminar"
    project = "project"


class ClassroomType(str, Enum):
    lecture_hall = "lecture_hall"
    laboratory = "laboratory"
    seminar_room = "seminar_room"
    auditorium = "auditorium"
    computer_lab = "computer_lab"
    tutorial_room = "tutorial_room"


def _validate_designation(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    if trimmed not in DESIGNATION_RANKS:
        raise ValueError(f"Unknown designation: {value}")
    return trimmed


class SchedulingKey(BaseModel):
    model_config = {"frozen": True}

    department: str = Field(min_length=1, max_length=200)
    academic_year: str = Field(min_length=1, max_length=20)
    semester: int = Field(ge=1, le=12)

    def as_string(self) -> str:
        return f"{self.department}|{self.academic_year}|{self.semester}"


class ClassroomRequirement(BaseModel):
    model_config = {"frozen": True}

    type: ClassroomType | None = None
    min_capacity: int = Field(default=0, ge=0, le=2000)
    facilities: frozenset[str] = Field(default_factory=frozenset)


class FacultyRequirement(BaseModel):
    model_config = {"frozen": True}

    specializations: frozenset[str] = Field(default_factory=frozenset)
    min_designation: str | None = None

    @field_validator("min_designation")
    @classmethod
    def validate_designation(cls, value: str | None) -> str | None:
        return _validate_designation(value)


class Subject(BaseModel):
    model_config = {"frozen": True}

    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    department: str = Field(min_length=1, max_length=200)
    credits: int = Field(default=3, ge=0, le=10)
    type: SubjectType = SubjectType.theory
    sessions_per_week: int = Field(ge=1, le=10)
    session_duration: int = Field(default=60, ge=15, le=240)
    classroom_requirement: ClassroomRequirement = Field(default_factory=ClassroomRequirement)
    faculty_requirement: FacultyRequirement = Field(default_factory=FacultyRequirement)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class Faculty(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    departments: frozenset[str] = Field(default_factory=frozenset)
    specializations: frozenset[str] = Field(default_factory=frozenset)
    designation: str = "Assistant Professor"
    weekly_load_limit: int = Field(default=18, ge=0, le=60)
    max_sessions_per_day: int = Field(default=6, ge=0, le=24)
    unavailable: tuple[DayWindow, ...] = ()

    @field_validator("designation")
    @classmethod
    def validate_designation(cls, value: str) -> str:
        return _validate_designation(value)


class Classroom(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=100)
    type: ClassroomType
    capacity: int = Field(ge=1, le=2000)
    facilities: frozenset[str] = Field(default_factory=frozenset)
    departments: frozenset[str] = Field(default_factory=frozenset)
    unavailable: tuple[DayWindow, ...] = ()


class BatchSubject(BaseModel):
    model_config = {"frozen": True}

    subject_code: str = Field(min_length=1, max_length=50)
    faculty_id: str | None = Field(default=None, min_length=1, max_length=36)

    @field_validator("subject_code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class Batch(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(min_length=1, max_length=36)
    name: str | None = Field(default=None, max_length=200)
    program: str = Field(default="UG", max_length=20)
    semester: int = Field(ge=1, le=12)
    size: int = Field(ge=1, le=2000)
    subjects: tuple[BatchSubject, ...] = ()
    max_sessions_per_day: int | None = Field(default=None, ge=1, le=24)
    blocked: tuple[DayWindow, ...] = ()

    @field_validator("subjects", mode="before")
    @classmethod
    def accept_plain_codes(cls, value):
        if isinstance(value, (list, tuple)):
            return tuple({"subject_code": item} if isinstance(item, str) else item for item in value)
        return value


class EntitySnapshot(BaseModel):
    """Immutable point-in-time view of the entities for one scheduling key."""

    model_config = {"frozen": True}

    key: SchedulingKey
    subjects: tuple[Subject, ...] = ()
    faculty: tuple[Faculty, ...] = ()
    classrooms: tuple[Classroom, ...] = ()
    batches: tuple[Batch, ...] = ()

    @model_validator(mode="after")
    def validate_references(self) -> "EntitySnapshot":
        def ensure_unique(label: str, ids: list[str]) -> None:
            seen: set[str] = set()
            duplicates: set[str] = set()
            for item_id in ids:
                if item_id in seen:
                    duplicates.add(item_id)
                else:
                    seen.add(item_id)
            if duplicates:
                raise ValueError(f"Duplicate {label} id(s): {', '.join(sorted(duplicates))}")

        ensure_unique("subject", [item.code for item in self.subjects])
        ensure_unique("faculty", [item.id for item in self.faculty])
        ensure_unique("classroom", [item.id for item in self.classrooms])
        ensure_unique("batch", [item.id for item in self.batches])

        subject_codes = {item.code for item in self.subjects}
        faculty_ids = {item.id for item in self.faculty}
        for batch in self.batches:
            ensure_unique(f"subject entry in batch {batch.id}", [entry.subject_code for entry in batch.subjects])
            for entry in batch.subjects:
                if entry.subject_code not in subject_codes:
                    raise ValueError(f"Batch {batch.id} references unknown subject {entry.subject_code}")
                if entry.faculty_id is not None and entry.faculty_id not in faculty_ids:
                    raise ValueError(f"Batch {batch.id} pins unknown faculty {entry.faculty_id}")
        return self

    def subject_map(self) -> dict[str, Subject]:
        return {item.code: item for item in self.subjects}

    def faculty_map(self) -> dict[str, Faculty]:
        return {item.id: item for item in self.faculty}

    def classroom_map(self) -> dict[str, Classroom]:
        return {item.id: item for item in self.classrooms}

    def batch_map(self) -> dict[str, Batch]:
        return {item.id: item for item in self.batches}
