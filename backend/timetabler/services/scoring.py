from __future__ import annotations

from collections import Counter, defaultdict
from typing import Iterable

from timetabler.schemas.conflict import Conflict
from timetabler.schemas.settings import DAY_ORDER, GenerationConfig
from timetabler.schemas.timetable import ScheduledSession, ScoreBreakdown, TimetableStatistics
from timetabler.services.time_grid import base_period_count


def _variance(values: list[int]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def utilization_rate(sessions: list[ScheduledSession], config: GenerationConfig, classroom_count: int) -> float:
    available = base_period_count(config) * classroom_count
    if available <= 0:
        return 0.0
    scheduled = sum(session.duration for session in sessions) / config.slot_granularity
    return min(1.0, max(0.0, scheduled / available))


def balance_rate(sessions: list[ScheduledSession], config: GenerationConfig) -> float:
    """1 / (1 + mean variance of every teaching faculty's per-day session counts)."""
    per_faculty: dict[str, Counter[str]] = defaultdict(Counter)
    for session in sessions:
        per_faculty[session.faculty_id][session.day] += 1
    if not per_faculty:
        return 1.0
    days = list(config.working_days)
    used = {day for counts in per_faculty.values() for day in counts}
    days.extend(sorted(used - set(days), key=DAY_ORDER.index))
    variances = [_variance([per_faculty[faculty_id][day] for day in days]) for faculty_id in sorted(per_faculty)]
    return 1.0 / (1.0 + sum(variances) / len(variances))


def evaluate_score(
    sessions: Iterable[ScheduledSession],
    conflicts: Iterable[Conflict],
    config: GenerationConfig,
    classroom_count: int,
) -> tuple[float, ScoreBreakdown]:
    session_list = list(sessions)
    conflict_list = list(conflicts)
    weights = config.score_weights

    utilization = utilization_rate(session_list, config, classroom_count)
    balance = balance_rate(session_list, config)
    blocking = sum(1 for item in conflict_list if item.is_blocking)
    warnings = len(conflict_list) - blocking
    penalty = blocking * weights.blocking_penalty + warnings * weights.warning_penalty

    quality = 100.0 * (weights.utilization * utilization + weights.balance * balance)
    quality /= weights.utilization + weights.balance
    score = round(min(100.0, max(0.0, quality - penalty)), 2)
    breakdown = ScoreBreakdown(
        utilization=round(utilization, 4),
        balance=round(balance, 4),
        blocking_conflicts=blocking,
        warning_conflicts=warnings,
        conflict_penalty=round(penalty, 2),
    )
    return score, breakdown


def compute_statistics(
    sessions: Iterable[ScheduledSession],
    config: GenerationConfig,
    classroom_ids: Iterable[str],
) -> TimetableStatistics:
    session_list = list(sessions)
    by_day: Counter[str] = Counter(session.day for session in session_list)
    faculty_minutes: Counter[str] = Counter()
    classroom_minutes: Counter[str] = Counter()
    for session in session_list:
        faculty_minutes[session.faculty_id] += session.duration
        classroom_minutes[session.classroom_id] += session.duration

    available_minutes = base_period_count(config) * config.slot_granularity
    classroom_utilization = {}
    for classroom_id in sorted(set(classroom_ids) | set(classroom_minutes)):
        used = classroom_minutes[classroom_id]
        classroom_utilization[classroom_id] = round(100.0 * used / available_minutes, 2) if available_minutes else 0.0

    return TimetableStatistics(
        total_sessions=len(session_list),
        sessions_by_day={day: by_day[day] for day in DAY_ORDER if by_day[day]},
        faculty_hours={faculty_id: round(minutes / 60, 2) for faculty_id, minutes in sorted(faculty_minutes.items())},
        classroom_utilization=classroom_utilization,
    )
