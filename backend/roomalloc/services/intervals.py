from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from roomalloc.models.school_class import ClassSchedule, SchoolClass, Weekday


@dataclass(frozen=True)
class WeeklyInterval:
    """A weekly recurring half-open interval [start, end) on one day.

    Times are ``HH:MM`` strings, which compare correctly as plain strings.
    """

    day: Weekday
    start: str
    end: str

    @property
    def is_operational(self) -> bool:
        return self.day is not Weekday.sunday

    def overlaps(self, other: "WeeklyInterval") -> bool:
        if not (self.is_operational and other.is_operational):
            return False
        if self.day is not other.day:
            return False
        return self.start < other.end and other.start < self.end

    @classmethod
    def from_schedule(cls, schedule: ClassSchedule) -> "WeeklyInterval":
        return cls(day=Weekday(schedule.day_of_week), start=schedule.start_time, end=schedule.end_time)

    def as_dict(self) -> dict:
        return {"day": self.day.value, "start_time": self.start, "end_time": self.end}


def section_intervals(section: SchoolClass) -> list[WeeklyInterval]:
    """Operational intervals of a section; Sunday slots are dropped."""
    intervals = (WeeklyInterval.from_schedule(schedule) for schedule in section.schedules)
    return [interval for interval in intervals if interval.is_operational]


def any_overlap(left: Iterable[WeeklyInterval], right: Iterable[WeeklyInterval]) -> bool:
    right = list(right)
    return any(a.overlaps(b) for a in left for b in right)


def sections_overlap(first: SchoolClass, second: SchoolClass) -> bool:
    return any_overlap(section_intervals(first), section_intervals(second))
