from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
import logging
from time import perf_counter
from typing import Iterable

from timetabler.core.exceptions import InfeasibleError
from timetabler.schemas.settings import DAY_ORDER
from timetabler.schemas.timetable import ScheduledSession
from timetabler.services.constraint_model import ConstraintModel, DemandUnit
from timetabler.services.time_grid import Slot

logger = logging.getLogger(__name__)

RESOURCE_KIND_ORDER = {"classroom": 0, "faculty": 1, "batch": 2}


@dataclass(frozen=True)
class Placement:
    unit_id: str
    batch_id: str
    slot: Slot
    faculty_id: str
    classroom_id: str

    @property
    def duration(self) -> int:
        return self.slot.end - self.slot.start


@dataclass
class AllocationResult:
    sessions: list[ScheduledSession]
    backtracks: int
    runtime_ms: int


def _overlaps(busy: list[tuple[int, int, str]], start: int, end: int) -> bool:
    return any(start < busy_end and busy_start < end for busy_start, busy_end, _ in busy)


def slot_for_session(session: ScheduledSession) -> Slot:
    return Slot(
        day_index=DAY_ORDER.index(session.day),
        start=session.start_minutes,
        end=session.end_minutes,
        day=session.day,
    )


class AllocationState:
    """Occupancy of faculty, classrooms and batches for sessions placed in one run."""

    def __init__(self) -> None:
        self.faculty_busy: dict[tuple[str, str], list[tuple[int, int, str]]] = defaultdict(list)
        self.classroom_busy: dict[tuple[str, str], list[tuple[int, int, str]]] = defaultdict(list)
        self.batch_busy: dict[tuple[str, str], list[tuple[int, int, str]]] = defaultdict(list)
        self.faculty_day_counts: dict[str, Counter[str]] = defaultdict(Counter)
        self.faculty_minutes: Counter[str] = Counter()
        self.batch_day_counts: dict[str, Counter[str]] = defaultdict(Counter)
        self.batch_day_rooms: dict[tuple[str, str], Counter[str]] = defaultdict(Counter)
        self.placements: dict[str, Placement] = {}

    @classmethod
    def from_placements(cls, placements: Iterable[Placement]) -> "AllocationState":
        state = cls()
        for placement in placements:
            state.add(placement)
        return state

    def add(self, placement: Placement) -> None:
        slot = placement.slot
        entry = (slot.start, slot.end, placement.unit_id)
        self.faculty_busy[(placement.faculty_id, slot.day)].append(entry)
        self.classroom_busy[(placement.classroom_id, slot.day)].append(entry)
        self.batch_busy[(placement.batch_id, slot.day)].append(entry)
        self.faculty_day_counts[placement.faculty_id][slot.day] += 1
        self.faculty_minutes[placement.faculty_id] += placement.duration
        self.batch_day_counts[placement.batch_id][slot.day] += 1
        self.batch_day_rooms[(placement.batch_id, slot.day)][placement.classroom_id] += 1
        self.placements[placement.unit_id] = placement

    def remove(self, unit_id: str) -> Placement:
        placement = self.placements.pop(unit_id)
        slot = placement.slot
        entry = (slot.start, slot.end, unit_id)
        self.faculty_busy[(placement.faculty_id, slot.day)].remove(entry)
        self.classroom_busy[(placement.classroom_id, slot.day)].remove(entry)
        self.batch_busy[(placement.batch_id, slot.day)].remove(entry)
        self.faculty_day_counts[placement.faculty_id][slot.day] -= 1
        self.faculty_minutes[placement.faculty_id] -= placement.duration
        self.batch_day_counts[placement.batch_id][slot.day] -= 1
        self.batch_day_rooms[(placement.batch_id, slot.day)][placement.classroom_id] -= 1
        return placement

    def add_session(self, session: ScheduledSession) -> None:
        self.add(
            Placement(
                unit_id=session.id,
                batch_id=session.batch_id,
                slot=slot_for_session(session),
                faculty_id=session.faculty_id,
                classroom_id=session.classroom_id,
            )
        )


class SlotAllocator:
    """Most-constrained-first constructive allocator with bounded backtracking."""

    def __init__(self, model: ConstraintModel) -> None:
        self.model = model
        self.config = model.config
        self.units = model.unit_map()

    # -- feasibility ---------------------------------------------------------

    def _batch_ok(self, state: AllocationState, unit: DemandUnit, slot: Slot) -> bool:
        if _overlaps(state.batch_busy[(unit.batch_id, slot.day)], slot.start, slot.end):
            return False
        return state.batch_day_counts[unit.batch_id][slot.day] < self.model.batch_daily_cap(unit.batch_id)

    def _faculty_ok(self, state: AllocationState, faculty_id: str, slot: Slot) -> bool:
        if not self.model.faculty_free(faculty_id, slot):
            return False
        if _overlaps(state.faculty_busy[(faculty_id, slot.day)], slot.start, slot.end):
            return False
        faculty = self.model.faculty[faculty_id]
        if state.faculty_day_counts[faculty_id][slot.day] >= faculty.max_sessions_per_day:
            return False
        duration = slot.end - slot.start
        return state.faculty_minutes[faculty_id] + duration <= self.model.weekly_limit_minutes[faculty_id]

    def _classroom_ok(self, state: AllocationState, classroom_id: str, slot: Slot) -> bool:
        if not self.model.classroom_free(classroom_id, slot):
            return False
        return not _overlaps(state.classroom_busy[(classroom_id, slot.day)], slot.start, slot.end)

    # -- selection -----------------------------------------------------------

    def _variance_after(self, state: AllocationState, faculty_id: str, day: str) -> float:
        counts = state.faculty_day_counts[faculty_id]
        days = self.config.working_days
        values = [counts[item] + (1 if item == day else 0) for item in days]
        mean = sum(values) / len(values)
        return round(sum((value - mean) ** 2 for value in values) / len(values), 9)

    def _best_placement(
        self,
        state: AllocationState,
        unit: DemandUnit,
        *,
        excluded_slots: set[tuple[str, int]] | None = None,
        excluded_faculty: Iterable[str] = (),
    ) -> Placement | None:
        excluded_slots = excluded_slots or set()
        blocked_faculty = set(excluded_faculty)
        best_key: tuple | None = None
        best: Placement | None = None
        for slot in unit.candidate_slots:
            if (slot.day, slot.start) in excluded_slots:
                continue
            if not self._batch_ok(state, unit, slot):
                continue
            rooms = [room_id for room_id in unit.eligible_classrooms if self._classroom_ok(state, room_id, slot)]
            if not rooms:
                continue
            day_rooms = state.batch_day_rooms[(unit.batch_id, slot.day)]
            for faculty_id in unit.eligible_faculty:
                if faculty_id in blocked_faculty or not self._faculty_ok(state, faculty_id, slot):
                    continue
                variance = self._variance_after(state, faculty_id, slot.day)
                for room_id in rooms:
                    locality = 1 if day_rooms[room_id] > 0 else 0
                    key = (variance, -locality, slot.day_index, slot.start, faculty_id, room_id)
                    if best_key is None or key < best_key:
                        best_key = key
                        best = Placement(
                            unit_id=unit.unit_id,
                            batch_id=unit.batch_id,
                            slot=slot,
                            faculty_id=faculty_id,
                            classroom_id=room_id,
                        )
        return best

    def _limiting_resource(self, state: AllocationState, unit: DemandUnit) -> str | None:
        blockers: Counter[str] = Counter()
        for slot in unit.candidate_slots:
            batch_blocked = not self._batch_ok(state, unit, slot)
            for faculty_id in unit.eligible_faculty:
                faculty_blocked = not self._faculty_ok(state, faculty_id, slot)
                for room_id in unit.eligible_classrooms:
                    if batch_blocked:
                        blockers[f"batch:{unit.batch_id}"] += 1
                    if faculty_blocked:
                        blockers[f"faculty:{faculty_id}"] += 1
                    if not self._classroom_ok(state, room_id, slot):
                        blockers[f"classroom:{room_id}"] += 1
        if not blockers:
            return None
        ranked = sorted(
            blockers.items(),
            key=lambda item: (-item[1], RESOURCE_KIND_ORDER[item[0].split(":", 1)[0]], item[0]),
        )
        return ranked[0][0]

    def _shares_resource(self, placement: Placement, unit: DemandUnit) -> bool:
        return (
            placement.batch_id == unit.batch_id
            or placement.faculty_id in unit.eligible_faculty
            or placement.classroom_id in unit.eligible_classrooms
        )

    def to_session(self, unit: DemandUnit, placement: Placement) -> ScheduledSession:
        return ScheduledSession(
            id=unit.unit_id,
            subject_code=unit.subject_code,
            batch_id=unit.batch_id,
            faculty_id=placement.faculty_id,
            classroom_id=placement.classroom_id,
            day=placement.slot.day,
            start_time=placement.slot.start_time,
            end_time=placement.slot.end_time,
            session_index=unit.index,
            session_type=unit.session_type,
        )

    def _sessions(self, state: AllocationState) -> list[ScheduledSession]:
        sessions = [
            self.to_session(self.units[unit_id], placement)
            for unit_id, placement in state.placements.items()
            if unit_id in self.units
        ]
        return sorted(sessions, key=lambda item: item.sort_key())

    # -- search --------------------------------------------------------------

    def allocate(self, *, time_budget: float | None = None) -> AllocationResult:
        started = perf_counter()
        budget = self.config.max_duration_seconds if time_budget is None else time_budget
        deadline = started + budget
        limit = self.config.effective_backtrack_limit(len(self.model.units))

        state = AllocationState()
        order: list[DemandUnit] = sorted(self.model.units, key=lambda unit: unit.priority_key())
        pending = list(order)
        history: list[str] = []
        exclusions: dict[str, set[tuple[str, int]]] = defaultdict(set)
        backtracks = 0
        best_partial: list[ScheduledSession] = []
        # Placements and stuck unit at the deepest dead end, used to name the limiting resource.
        deepest: tuple[dict[str, Placement], DemandUnit] | None = None

        while pending:
            if perf_counter() > deadline:
                logger.warning(
                    "Allocation time budget exhausted key=%s placed=%s/%s",
                    self.model.key.as_string(),
                    len(state.placements),
                    len(order),
                )
                raise InfeasibleError(
                    f"Time budget of {budget:g}s exhausted before all demand units were placed",
                    unplaced=[unit.unit_id for unit in pending],
                    details={
                        "timed_out": True,
                        "backtracks": backtracks,
                        "partial_sessions": [item.model_dump(mode="json") for item in best_partial],
                    },
                )

            unit = pending[0]
            placement = self._best_placement(state, unit, excluded_slots=exclusions[unit.unit_id])
            if placement is not None:
                state.add(placement)
                history.append(unit.unit_id)
                pending.pop(0)
                exclusions.pop(unit.unit_id, None)
                if len(state.placements) > len(best_partial):
                    best_partial = self._sessions(state)
                continue

            if deepest is None or len(state.placements) > len(deepest[0]):
                deepest = (dict(state.placements), unit)

            backtracks += 1
            victim_id = next(
                (
                    placed_id
                    for placed_id in reversed(history)
                    if self._shares_resource(state.placements[placed_id], unit)
                ),
                None,
            )
            if backtracks > limit or victim_id is None:
                stuck_state = AllocationState.from_placements(deepest[0].values())
                limiting = self._limiting_resource(stuck_state, deepest[1])
                logger.warning(
                    "Allocation infeasible key=%s stuck=%s limiting=%s backtracks=%s",
                    self.model.key.as_string(),
                    unit.unit_id,
                    limiting,
                    backtracks,
                )
                raise InfeasibleError(
                    f"Could not place {len(pending)} demand unit(s); "
                    f"limiting resource {limiting or 'unknown'} is exhausted",
                    unplaced=[item.unit_id for item in pending],
                    limiting_resource=limiting,
                    details={
                        "timed_out": False,
                        "backtracks": backtracks,
                        "partial_sessions": [item.model_dump(mode="json") for item in best_partial],
                    },
                )

            history.remove(victim_id)
            undone = state.remove(victim_id)
            victim = self.units[victim_id]
            victim_exclusions = exclusions[victim_id]
            victim_exclusions.add((undone.slot.day, undone.slot.start))
            if len(victim_exclusions) >= len(victim.candidate_slots):
                victim_exclusions.clear()
                victim_exclusions.add((undone.slot.day, undone.slot.start))
            # The stuck unit gets first pick of the freed resources.
            pending.insert(1, victim)

        sessions = self._sessions(state)
        runtime_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "Allocation finished key=%s sessions=%s backtracks=%s runtime_ms=%s",
            self.model.key.as_string(),
            len(sessions),
            backtracks,
            runtime_ms,
        )
        return AllocationResult(sessions=sessions, backtracks=backtracks, runtime_ms=runtime_ms)

    def place_units(
        self,
        units: list[DemandUnit],
        *,
        fixed: list[ScheduledSession],
        excluded_faculty: dict[str, set[str]] | None = None,
        time_budget: float | None = None,
    ) -> tuple[list[ScheduledSession], list[str]]:
        """Place a few units around a fixed session set without moving any fixed session.

        Returns the new sessions and the ids of units that found no free combination.
        """
        excluded_faculty = excluded_faculty or {}
        deadline = perf_counter() + (self.config.max_duration_seconds if time_budget is None else time_budget)
        state = AllocationState()
        for session in fixed:
            state.add_session(session)

        placed: list[ScheduledSession] = []
        unplaced: list[str] = []
        for unit in sorted(units, key=lambda item: item.priority_key()):
            if perf_counter() > deadline:
                unplaced.append(unit.unit_id)
                continue
            placement = self._best_placement(
                state,
                unit,
                excluded_faculty=excluded_faculty.get(unit.unit_id, ()),
            )
            if placement is None:
                unplaced.append(unit.unit_id)
                continue
            state.add(placement)
            placed.append(self.to_session(unit, placement))
        return placed, unplaced
