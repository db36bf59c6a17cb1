from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.core.config import CourseScheduleRule
from roomalloc.models.school_class import CourseInformation, Obligation, SchoolClass, Weekday
from roomalloc.services.intervals import section_intervals

WEEKDAYS = [Weekday.monday, Weekday.tuesday, Weekday.wednesday, Weekday.thursday, Weekday.friday]


@dataclass
class CourseGrid:
    course_code: str
    semester: int
    days: list[str] = field(default_factory=list)
    time_ranges: list[str] = field(default_factory=list)
    sections: list[SchoolClass] = field(default_factory=list)


def apply_course_rule(sections: list[SchoolClass], rule: CourseScheduleRule | None) -> list[SchoolClass]:
    """Drop sections excluded by the course's rule; no rule keeps everything."""
    if rule is None:
        return list(sections)
    kept = []
    for section in sections:
        if section.section_suffix in rule.excluded_section_suffixes:
            continue
        if rule.time_cutoff is not None and any(
            schedule.start_time >= rule.time_cutoff for schedule in section.schedules
        ):
            continue
        kept.append(section)
    return kept


def grid_days(sections: list[SchoolClass]) -> list[str]:
    days = [day.value for day in WEEKDAYS]
    if any(interval.day is Weekday.saturday for section in sections for interval in section_intervals(section)):
        days.append(Weekday.saturday.value)
    return days


def grid_time_ranges(sections: list[SchoolClass]) -> list[str]:
    ranges = {(interval.start, interval.end) for section in sections for interval in section_intervals(section)}
    return [f"{start} - {end}" for start, end in sorted(ranges)]


def build_course_grid(
    db: Session,
    *,
    term_id: int,
    course_code: str,
    semester: int,
    rules: dict[str, CourseScheduleRule],
) -> CourseGrid:
    semesters = [semester - 1, semester]
    sections = list(
        db.execute(
            select(SchoolClass)
            .where(
                SchoolClass.school_term_id == term_id,
                SchoolClass.course_informations.any(
                    (CourseInformation.course_code == course_code)
                    & (CourseInformation.semester.in_(semesters))
                    & (CourseInformation.obligation == Obligation.mandatory)
                ),
            )
            .options(
                selectinload(SchoolClass.schedules),
                selectinload(SchoolClass.course_informations),
                selectinload(SchoolClass.instructors),
            )
            .order_by(SchoolClass.discipline_code, SchoolClass.section_code)
        ).scalars()
    )
    shown = apply_course_rule(sections, rules.get(course_code))
    return CourseGrid(
        course_code=course_code,
        semester=semester,
        days=grid_days(shown),
        time_ranges=grid_time_ranges(shown),
        sections=shown,
    )
