from __future__ import annotations

from dataclasses import dataclass

from timetabler.schemas.settings import GenerationConfig, minutes_to_time


@dataclass(frozen=True, order=True)
class Slot:
    day_index: int
    start: int
    end: int
    day: str

    @property
    def start_time(self) -> str:
        return minutes_to_time(self.start)

    @property
    def end_time(self) -> str:
        return minutes_to_time(self.end)

    def overlaps(self, day: str, start: int, end: int) -> bool:
        return self.day == day and self.start < end and start < self.end


def _hits_lunch(config: GenerationConfig, start: int, end: int) -> bool:
    return config.lunch_break is not None and config.lunch_break.overlaps_minutes(start, end)


def build_slots(config: GenerationConfig, duration: int) -> list[Slot]:
    """Candidate slots of one duration, in working-day order then start time."""
    window = config.working_hours
    slots: list[Slot] = []
    for day_index, day in enumerate(config.working_days):
        start = window.start_minutes
        while start + duration <= window.end_minutes:
            end = start + duration
            if not _hits_lunch(config, start, end):
                slots.append(Slot(day_index=day_index, start=start, end=end, day=day))
            start += config.slot_granularity
    return slots


def base_period_count(config: GenerationConfig) -> int:
    """Number of granularity-sized periods available per week (lunch excluded)."""
    return len(build_slots(config, config.slot_granularity))


def fits_grid(config: GenerationConfig, day: str, start: int, end: int) -> bool:
    if day not in config.working_days:
        return False
    window = config.working_hours
    if start < window.start_minutes or end > window.end_minutes:
        return False
    if (start - window.start_minutes) % config.slot_granularity != 0:
        return False
    return not _hits_lunch(config, start, end)
