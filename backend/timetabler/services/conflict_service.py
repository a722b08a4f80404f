from __future__ import annotations

from collections import Counter, defaultdict
import logging
from typing import Iterable

from timetabler.schemas.conflict import Conflict, ConflictReport, ResolutionAction
from timetabler.schemas.entities import EntitySnapshot
from timetabler.schemas.settings import DayWindow, GenerationConfig
from timetabler.schemas.timetable import ScheduledSession
from timetabler.services.workload import meets_min_designation, weekly_load_limit_minutes

logger = logging.getLogger(__name__)


def _first_overlap(windows: Iterable[DayWindow], session: ScheduledSession) -> DayWindow | None:
    return next(
        (item for item in windows if item.overlaps(session.day, session.start_minutes, session.end_minutes)),
        None,
    )


class ConflictService:
    """Checks a session set against the hard constraints of its snapshot.

    Double bookings, load, daily caps, unavailability and session counts are
    always blocking. Capacity, room type, facilities and faculty eligibility
    are warnings when the run allowed relaxed matching.
    """

    def __init__(
        self,
        sessions: Iterable[ScheduledSession],
        snapshot: EntitySnapshot,
        config: GenerationConfig,
        unavailability: dict[str, list[DayWindow]] | None = None,
    ):
        self.sessions = sorted(sessions, key=lambda item: (item.sort_key(), item.id))
        self.snapshot = snapshot
        self.config = config
        self.unavailability = unavailability or {}
        self.subjects = snapshot.subject_map()
        self.faculty = snapshot.faculty_map()
        self.classrooms = snapshot.classroom_map()
        self.batches = snapshot.batch_map()

    @property
    def _matching_severity(self) -> str:
        return "warning" if self.config.relaxed_matching else "blocking"

    def detect_conflicts(self) -> ConflictReport:
        conflicts: list[Conflict] = []
        conflicts.extend(self._double_bookings())
        for session in self.sessions:
            conflicts.extend(self._placement_conflicts(session))
        conflicts.extend(self._load_conflicts())
        conflicts.extend(self._daily_cap_conflicts())
        conflicts.extend(self._session_count_conflicts())

        unique: dict[str, Conflict] = {}
        for conflict in conflicts:
            unique.setdefault(conflict.id, conflict)
        ordered = sorted(unique.values(), key=lambda item: (item.kind, item.session_ids, item.id))

        resolutions: list[ResolutionAction] = []
        for conflict in ordered:
            resolutions.extend(self.generate_resolutions(conflict))

        blocking = sum(1 for item in ordered if item.is_blocking)
        if blocking:
            logger.info(
                "Conflict detection key=%s sessions=%s blocking=%s warnings=%s",
                self.snapshot.key.as_string(),
                len(self.sessions),
                blocking,
                len(ordered) - blocking,
            )
        return ConflictReport(conflicts=ordered, suggested_resolutions=resolutions)

    def _double_bookings(self) -> list[Conflict]:
        conflicts: list[Conflict] = []
        sessions_by_day: dict[str, list[ScheduledSession]] = defaultdict(list)
        for session in self.sessions:
            sessions_by_day[session.day].append(session)

        for day_sessions in sessions_by_day.values():
            count = len(day_sessions)
            for i in range(count):
                first = day_sessions[i]
                for j in range(i + 1, count):
                    second = day_sessions[j]
                    if second.start_minutes >= first.end_minutes:
                        # Sessions are sorted by start time within a day.
                        break
                    if not first.overlaps(second):
                        continue
                    pair = tuple(sorted((first.id, second.id)))
                    if first.faculty_id == second.faculty_id:
                        conflicts.append(
                            Conflict(
                                id=f"faculty-{pair[0]}-{pair[1]}",
                                kind="faculty_double_booked",
                                severity="blocking",
                                description=(
                                    f"Faculty {self._faculty_name(first.faculty_id)} is booked for "
                                    f"{first.subject_code} and {second.subject_code} on {first.day}"
                                ),
                                session_ids=pair,
                            )
                        )
                    if first.classroom_id == second.classroom_id:
                        conflicts.append(
                            Conflict(
                                id=f"classroom-{pair[0]}-{pair[1]}",
                                kind="classroom_double_booked",
                                severity="blocking",
                                description=(
                                    f"Classroom {self._classroom_name(first.classroom_id)} hosts "
                                    f"{first.subject_code} and {second.subject_code} on {first.day}"
                                ),
                                session_ids=pair,
                            )
                        )
                    if first.batch_id == second.batch_id:
                        conflicts.append(
                            Conflict(
                                id=f"batch-{pair[0]}-{pair[1]}",
                                kind="batch_double_booked",
                                severity="blocking",
                                description=(
                                    f"Batch {first.batch_id} attends {first.subject_code} and "
                                    f"{second.subject_code} at the same time on {first.day}"
                                ),
                                session_ids=pair,
                            )
                        )
        return conflicts

    def _placement_conflicts(self, session: ScheduledSession) -> list[Conflict]:
        conflicts: list[Conflict] = []
        severity = self._matching_severity
        subject = self.subjects.get(session.subject_code)
        batch = self.batches.get(session.batch_id)
        classroom = self.classrooms.get(session.classroom_id)
        faculty = self.faculty.get(session.faculty_id)
        ids = (session.id,)

        if classroom is not None and batch is not None:
            required = subject.classroom_requirement.min_capacity if subject else 0
            needed = max(batch.size, required)
            if classroom.capacity < needed:
                conflicts.append(
                    Conflict(
                        id=f"capacity-{session.id}",
                        kind="capacity_exceeded",
                        severity=severity,
                        description=f"Classroom {classroom.name} capacity ({classroom.capacity}) < required ({needed})",
                        session_ids=ids,
                    )
                )

        if classroom is not None and subject is not None:
            requirement = subject.classroom_requirement
            if requirement.type is not None:
                allowed = self.config.compatible_room_types(requirement.type.value)
                if classroom.type.value not in allowed:
                    conflicts.append(
                        Conflict(
                            id=f"type-{session.id}",
                            kind="classroom_type_mismatch",
                            severity=severity,
                            description=(
                                f"{subject.code} needs a {requirement.type.value} but classroom "
                                f"{classroom.name} is a {classroom.type.value}"
                            ),
                            session_ids=ids,
                        )
                    )
            missing = sorted(requirement.facilities - classroom.facilities)
            if missing:
                conflicts.append(
                    Conflict(
                        id=f"facility-{session.id}",
                        kind="facility_missing",
                        severity=severity,
                        description=f"Classroom {classroom.name} lacks {', '.join(missing)} for {subject.code}",
                        session_ids=ids,
                    )
                )

        if faculty is not None and subject is not None:
            requirement = subject.faculty_requirement
            department = self.snapshot.key.department
            reasons: list[str] = []
            if faculty.departments and department not in faculty.departments:
                reasons.append(f"not a member of {department}")
            if requirement.specializations and not (requirement.specializations & faculty.specializations):
                reasons.append("no matching specialization")
            if not meets_min_designation(faculty.designation, requirement.min_designation):
                reasons.append(f"designation below {requirement.min_designation}")
            if reasons:
                conflicts.append(
                    Conflict(
                        id=f"eligibility-{session.id}",
                        kind="faculty_ineligible",
                        severity=severity,
                        description=f"Faculty {faculty.name} cannot teach {subject.code}: {'; '.join(reasons)}",
                        session_ids=ids,
                    )
                )

        if faculty is not None:
            windows = list(faculty.unavailable) + list(self.unavailability.get(faculty.id, []))
            for window in windows:
                if window.overlaps(session.day, session.start_minutes, session.end_minutes):
                    reason = f" ({window.reason})" if window.reason else ""
                    conflicts.append(
                        Conflict(
                            id=f"unavailable-{session.id}",
                            kind="unavailable_faculty",
                            severity="blocking",
                            description=(
                                f"Faculty {faculty.name} is unavailable on {session.day} "
                                f"{window.start_time}-{window.end_time}{reason}"
                            ),
                            session_ids=ids,
                        )
                    )
                    break

        if classroom is not None:
            window = _first_overlap(classroom.unavailable, session)
            if window is not None:
                reason = f" ({window.reason})" if window.reason else ""
                conflicts.append(
                    Conflict(
                        id=f"room-unavailable-{session.id}",
                        kind="classroom_unavailable",
                        severity="blocking",
                        description=(
                            f"Classroom {classroom.name} is unavailable on {session.day} "
                            f"{window.start_time}-{window.end_time}{reason}"
                        ),
                        session_ids=ids,
                    )
                )

        if batch is not None:
            window = _first_overlap(batch.blocked, session)
            if window is not None:
                reason = f" ({window.reason})" if window.reason else ""
                conflicts.append(
                    Conflict(
                        id=f"blocked-{session.id}",
                        kind="batch_blocked",
                        severity="blocking",
                        description=(
                            f"Batch {batch.id} is blocked on {session.day} "
                            f"{window.start_time}-{window.end_time}{reason}"
                        ),
                        session_ids=ids,
                    )
                )
        return conflicts

    def _load_conflicts(self) -> list[Conflict]:
        minutes: Counter[str] = Counter()
        session_ids: dict[str, list[str]] = defaultdict(list)
        for session in self.sessions:
            minutes[session.faculty_id] += session.duration
            session_ids[session.faculty_id].append(session.id)

        conflicts: list[Conflict] = []
        for faculty_id in sorted(minutes):
            faculty = self.faculty.get(faculty_id)
            if faculty is None:
                continue
            limit = weekly_load_limit_minutes(faculty.designation, faculty.weekly_load_limit)
            if minutes[faculty_id] > limit:
                ids = tuple(sorted(session_ids[faculty_id]))
                conflicts.append(
                    Conflict(
                        id=f"load-{faculty_id}",
                        kind="load_exceeded",
                        severity="blocking",
                        description=(
                            f"Faculty {faculty.name} is scheduled for {minutes[faculty_id] / 60:g}h "
                            f"against a {limit / 60:g}h weekly limit"
                        ),
                        session_ids=ids,
                    )
                )
        return conflicts

    def _daily_cap_conflicts(self) -> list[Conflict]:
        by_faculty_day: dict[tuple[str, str], list[str]] = defaultdict(list)
        by_batch_day: dict[tuple[str, str], list[str]] = defaultdict(list)
        for session in self.sessions:
            by_faculty_day[(session.faculty_id, session.day)].append(session.id)
            by_batch_day[(session.batch_id, session.day)].append(session.id)

        conflicts: list[Conflict] = []
        for (faculty_id, day), ids in sorted(by_faculty_day.items()):
            faculty = self.faculty.get(faculty_id)
            if faculty is not None and len(ids) > faculty.max_sessions_per_day:
                conflicts.append(
                    Conflict(
                        id=f"daily-faculty-{faculty_id}-{day}",
                        kind="daily_cap_exceeded",
                        severity="blocking",
                        description=(
                            f"Faculty {faculty.name} has {len(ids)} sessions on {day} "
                            f"(limit {faculty.max_sessions_per_day})"
                        ),
                        session_ids=tuple(sorted(ids)),
                    )
                )
        for (batch_id, day), ids in sorted(by_batch_day.items()):
            batch = self.batches.get(batch_id)
            if batch is None:
                continue
            cap = batch.max_sessions_per_day or self.config.max_sessions_per_day
            if len(ids) > cap:
                conflicts.append(
                    Conflict(
                        id=f"daily-batch-{batch_id}-{day}",
                        kind="daily_cap_exceeded",
                        severity="blocking",
                        description=f"Batch {batch_id} has {len(ids)} sessions on {day} (limit {cap})",
                        session_ids=tuple(sorted(ids)),
                    )
                )
        return conflicts

    def _session_count_conflicts(self) -> list[Conflict]:
        scheduled: dict[tuple[str, str], list[str]] = defaultdict(list)
        for session in self.sessions:
            scheduled[(session.batch_id, session.subject_code)].append(session.id)

        expected: dict[tuple[str, str], int] = {}
        for batch in self.snapshot.batches:
            for entry in batch.subjects:
                subject = self.subjects[entry.subject_code]
                expected[(batch.id, subject.code)] = subject.sessions_per_week

        conflicts: list[Conflict] = []
        for pair in sorted(set(expected) | set(scheduled)):
            wanted = expected.get(pair, 0)
            ids = scheduled.get(pair, [])
            if len(ids) == wanted:
                continue
            batch_id, subject_code = pair
            conflicts.append(
                Conflict(
                    id=f"count-{batch_id}-{subject_code}",
                    kind="session_count_mismatch",
                    severity="blocking",
                    description=(
                        f"Batch {batch_id} has {len(ids)} session(s) of {subject_code}, expected {wanted}"
                    ),
                    session_ids=tuple(sorted(ids)),
                )
            )
        return conflicts

    def _faculty_name(self, faculty_id: str) -> str:
        faculty = self.faculty.get(faculty_id)
        return faculty.name if faculty else faculty_id

    def _classroom_name(self, classroom_id: str) -> str:
        classroom = self.classrooms.get(classroom_id)
        return classroom.name if classroom else classroom_id

    def generate_resolutions(self, conflict: Conflict) -> list[ResolutionAction]:
        if not conflict.session_ids:
            return []
        target = conflict.session_ids[-1]
        resolutions: list[ResolutionAction] = []
        if conflict.kind in (
            "classroom_double_booked",
            "capacity_exceeded",
            "classroom_type_mismatch",
            "facility_missing",
            "classroom_unavailable",
        ):
            resolutions.append(
                ResolutionAction(
                    action_type="change_classroom",
                    description="Move the session to a free classroom that meets its requirements",
                    target_session_id=target,
                )
            )
        if conflict.kind in ("faculty_double_booked", "batch_double_booked", "daily_cap_exceeded", "batch_blocked"):
            resolutions.append(
                ResolutionAction(
                    action_type="move_slot",
                    description="Move to a different time slot",
                    target_session_id=target,
                )
            )
        if conflict.kind in ("faculty_ineligible", "unavailable_faculty", "load_exceeded"):
            resolutions.append(
                ResolutionAction(
                    action_type="change_faculty",
                    description="Assign another eligible faculty member",
                    target_session_id=target,
                )
            )
        return resolutions
