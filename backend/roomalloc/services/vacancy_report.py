from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.models.school_class import Fusion, SchoolClass
from roomalloc.schemas.room import RoomVacancyRow
from roomalloc.services.allocator import is_first_year_mandatory


def discipline_label(section: SchoolClass) -> str:
    if section.fusion is None:
        return section.discipline_code
    return "/".join(sorted({member.discipline_code for member in section.fusion.members}))


def build_vacancy_report(db: Session, term_id: int, first_year_semesters: list[int]) -> list[RoomVacancyRow]:
    """Spare seats per assigned section with enrollment, largest surplus first."""
    sections = db.execute(
        select(SchoolClass)
        .where(
            SchoolClass.school_term_id == term_id,
            SchoolClass.room_id.is_not(None),
            SchoolClass.enrollment_capacity > 0,
        )
        .options(
            selectinload(SchoolClass.room),
            selectinload(SchoolClass.course_informations),
            selectinload(SchoolClass.fusion).selectinload(Fusion.members),
        )
        .order_by(SchoolClass.id)
    ).scalars()

    rows = [
        RoomVacancyRow(
            discipline_label=discipline_label(section),
            section_suffix=section.section_suffix,
            room=section.room.name,
            seat_count=section.room.seat_count,
            enrollment=section.enrollment_capacity,
            spare_seats=section.room.seat_count - section.enrollment_capacity,
            is_first_year_mandatory=is_first_year_mandatory(section, first_year_semesters),
        )
        for section in sections
    ]
    # Stable sort keeps id order among equal surpluses.
    rows.sort(key=lambda row: row.spare_seats, reverse=True)
    return rows
