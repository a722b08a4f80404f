from __future__ import annotations

import logging
from dataclasses import dataclass, field

from timetabler.core.exceptions import ValidationError
from timetabler.schemas.entities import (
    Batch,
    Classroom,
    EntitySnapshot,
    Faculty,
    SchedulingKey,
    Subject,
    SubjectType,
)
from timetabler.schemas.settings import DayWindow, GenerationConfig
from timetabler.schemas.timetable import session_id_for
from timetabler.services.time_grid import Slot, build_slots
from timetabler.services.workload import meets_min_designation, weekly_load_limit_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DemandUnit:
    unit_id: str
    batch_id: str
    subject_code: str
    index: int
    duration: int
    batch_size: int
    session_type: SubjectType
    eligible_faculty: tuple[str, ...]
    eligible_classrooms: tuple[str, ...]
    candidate_slots: tuple[Slot, ...]
    constrainedness: int
    relaxed_faculty: bool = False
    relaxed_classrooms: bool = False

    def priority_key(self) -> tuple:
        return (self.constrainedness, self.batch_id, self.subject_code, self.index)


@dataclass
class ConstraintModel:
    key: SchedulingKey
    config: GenerationConfig
    units: list[DemandUnit]
    subjects: dict[str, Subject]
    faculty: dict[str, Faculty]
    classrooms: dict[str, Classroom]
    batches: dict[str, Batch]
    faculty_blocked: dict[str, tuple[DayWindow, ...]] = field(default_factory=dict)
    weekly_limit_minutes: dict[str, int] = field(default_factory=dict)

    def unit_map(self) -> dict[str, DemandUnit]:
        return {unit.unit_id: unit for unit in self.units}

    def batch_daily_cap(self, batch_id: str) -> int:
        batch = self.batches[batch_id]
        return batch.max_sessions_per_day or self.config.max_sessions_per_day

    def faculty_free(self, faculty_id: str, slot: Slot) -> bool:
        return not any(
            window.overlaps(slot.day, slot.start, slot.end) for window in self.faculty_blocked.get(faculty_id, ())
        )

    def classroom_free(self, classroom_id: str, slot: Slot) -> bool:
        return not any(
            window.overlaps(slot.day, slot.start, slot.end) for window in self.classrooms[classroom_id].unavailable
        )


class ConstraintModelBuilder:
    """Compiles an entity snapshot into demand units with their eligibility sets."""

    def __init__(
        self,
        config: GenerationConfig,
        *,
        extra_unavailability: dict[str, list[DayWindow]] | None = None,
    ) -> None:
        self.config = config
        self.extra_unavailability = extra_unavailability or {}
        self._slots_by_duration: dict[int, list[Slot]] = {}

    def _slots_for(self, duration: int) -> list[Slot]:
        if duration not in self._slots_by_duration:
            self._slots_by_duration[duration] = build_slots(self.config, duration)
        return self._slots_by_duration[duration]

    def faculty_matches(self, faculty: Faculty, subject: Subject, department: str, *, relaxed: bool = False) -> bool:
        if faculty.departments and department not in faculty.departments:
            return False
        required = subject.faculty_requirement
        if required.specializations and not (required.specializations & faculty.specializations):
            return False
        if relaxed:
            return True
        return meets_min_designation(faculty.designation, required.min_designation)

    def classroom_matches(
        self,
        classroom: Classroom,
        subject: Subject,
        batch_size: int,
        department: str,
        *,
        relaxed: bool = False,
    ) -> bool:
        if classroom.departments and department not in classroom.departments:
            return False
        required = subject.classroom_requirement
        if required.type is not None and classroom.type.value not in self.config.compatible_room_types(required.type.value):
            return False
        if relaxed:
            return True
        if classroom.capacity < max(batch_size, required.min_capacity):
            return False
        return required.facilities <= classroom.facilities

    def build(self, snapshot: EntitySnapshot) -> ConstraintModel:
        key = snapshot.key
        subjects = snapshot.subject_map()
        faculty = snapshot.faculty_map()
        classrooms = snapshot.classroom_map()
        batches = snapshot.batch_map()

        faculty_blocked = {
            faculty_id: tuple(item.unavailable) + tuple(self.extra_unavailability.get(faculty_id, ()))
            for faculty_id, item in faculty.items()
        }
        weekly_limits = {
            faculty_id: weekly_load_limit_minutes(item.designation, item.weekly_load_limit)
            for faculty_id, item in faculty.items()
        }
        model = ConstraintModel(
            key=key,
            config=self.config,
            units=[],
            subjects=subjects,
            faculty=faculty,
            classrooms=classrooms,
            batches=batches,
            faculty_blocked=faculty_blocked,
            weekly_limit_minutes=weekly_limits,
        )

        units: list[DemandUnit] = []
        for batch in sorted(batches.values(), key=lambda item: item.id):
            for entry in batch.subjects:
                subject = subjects[entry.subject_code]
                units.extend(self._units_for(model, batch, subject, entry.faculty_id))

        units.sort(key=lambda unit: unit.priority_key())
        model.units = units
        logger.info(
            "Constraint model built key=%s units=%s faculty=%s classrooms=%s",
            key.as_string(),
            len(units),
            len(faculty),
            len(classrooms),
        )
        return model

    def _units_for(
        self,
        model: ConstraintModel,
        batch: Batch,
        subject: Subject,
        pinned_faculty_id: str | None,
    ) -> list[DemandUnit]:
        department = model.key.department
        details = {"subject": subject.code, "batch": batch.id}

        slots = [
            slot
            for slot in self._slots_for(subject.session_duration)
            if not any(window.overlaps(slot.day, slot.start, slot.end) for window in batch.blocked)
        ]
        if not slots:
            raise ValidationError(
                f"No {subject.session_duration}-minute slot fits the working grid for subject {subject.code} "
                f"in batch {batch.id}",
                details={**details, "missing": "slot"},
            )

        def usable(faculty: Faculty) -> bool:
            if faculty.max_sessions_per_day < 1:
                return False
            if model.weekly_limit_minutes[faculty.id] < subject.session_duration:
                return False
            # Faculty on leave for every candidate slot is out for the whole term.
            return any(model.faculty_free(faculty.id, slot) for slot in slots)

        pool = list(model.faculty.values())
        if pinned_faculty_id is not None:
            pool = [model.faculty[pinned_faculty_id]]

        relaxed_faculty = False
        eligible_faculty = sorted(
            item.id for item in pool if usable(item) and self.faculty_matches(item, subject, department)
        )
        if not eligible_faculty and self.config.relaxed_matching:
            eligible_faculty = sorted(
                item.id for item in pool if usable(item) and self.faculty_matches(item, subject, department, relaxed=True)
            )
            relaxed_faculty = bool(eligible_faculty)
        if not eligible_faculty:
            reason = "pinned faculty does not satisfy" if pinned_faculty_id else "no faculty satisfies"
            raise ValidationError(
                f"Subject {subject.code} for batch {batch.id}: {reason} the specialization, designation "
                f"and availability requirements",
                details={**details, "missing": "faculty", "pinned_faculty": pinned_faculty_id},
            )

        relaxed_classrooms = False
        eligible_classrooms = sorted(
            item.id
            for item in model.classrooms.values()
            if self.classroom_matches(item, subject, batch.size, department)
        )
        if not eligible_classrooms and self.config.relaxed_matching:
            eligible_classrooms = sorted(
                item.id
                for item in model.classrooms.values()
                if self.classroom_matches(item, subject, batch.size, department, relaxed=True)
            )
            relaxed_classrooms = bool(eligible_classrooms)
        if not eligible_classrooms:
            raise ValidationError(
                f"Subject {subject.code} for batch {batch.id}: no classroom satisfies the type, capacity "
                f"and facility requirements",
                details={**details, "missing": "classroom"},
            )

        constrainedness = 0
        for slot in slots:
            free_faculty = sum(1 for faculty_id in eligible_faculty if model.faculty_free(faculty_id, slot))
            free_rooms = sum(1 for room_id in eligible_classrooms if model.classroom_free(room_id, slot))
            constrainedness += free_faculty * free_rooms

        return [
            DemandUnit(
                unit_id=session_id_for(batch.id, subject.code, index),
                batch_id=batch.id,
                subject_code=subject.code,
                index=index,
                duration=subject.session_duration,
                batch_size=batch.size,
                session_type=subject.type,
                eligible_faculty=tuple(eligible_faculty),
                eligible_classrooms=tuple(eligible_classrooms),
                candidate_slots=tuple(slots),
                constrainedness=constrainedness,
                relaxed_faculty=relaxed_faculty,
                relaxed_classrooms=relaxed_classrooms,
            )
            for index in range(subject.sessions_per_week)
        ]
