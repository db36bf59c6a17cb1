from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.core.exceptions import AllocationError
from roomalloc.models.room import Room
from roomalloc.models.school_class import CourseInformation, Fusion, Obligation, SchoolClass, SectionType
from roomalloc.services.intervals import sections_overlap
from roomalloc.services.terms import TermProvider, find_previous_year_term

logger = logging.getLogger(__name__)


@dataclass
class FirstSemesterResult:
    current_term_id: int
    previous_term_id: int
    dry_run: bool
    processed: int = 0
    allocated: int = 0
    moved: int = 0
    evicted: int = 0
    already_correct: int = 0
    not_found: int = 0
    actions: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "current_term_id": self.current_term_id,
            "previous_term_id": self.previous_term_id,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "allocated": self.allocated,
            "moved": self.moved,
            "evicted": self.evicted,
            "already_correct": self.already_correct,
            "not_found": self.not_found,
            "actions": self.actions,
        }


def _label(section: SchoolClass) -> str:
    return f"{section.discipline_code} (T.{section.section_code})"


class FirstSemesterCarryOver:
    """Puts mandatory first-semester sections back in the room their counterpart used a year earlier."""

    def __init__(self, db: Session, term_provider: TermProvider) -> None:
        self.db = db
        self.term_provider = term_provider

    def _first_semester_sections(self, term_id: int) -> list[SchoolClass]:
        return list(
            self.db.execute(
                select(SchoolClass)
                .where(
                    SchoolClass.school_term_id == term_id,
                    SchoolClass.section_type == SectionType.undergraduate,
                    SchoolClass.is_external.is_(False),
                    SchoolClass.course_informations.any(
                        (CourseInformation.semester == 1) & (CourseInformation.obligation == Obligation.mandatory)
                    ),
                )
                .options(selectinload(SchoolClass.schedules), selectinload(SchoolClass.fusion).selectinload(Fusion.members))
                .order_by(SchoolClass.id)
            ).scalars()
        )

    def _previous_room(self, previous_term_id: int, section: SchoolClass) -> Room | None:
        counterpart = self.db.execute(
            select(SchoolClass)
            .where(
                SchoolClass.school_term_id == previous_term_id,
                SchoolClass.discipline_code == section.discipline_code,
                SchoolClass.section_code.endswith(section.section_suffix),
                SchoolClass.room_id.is_not(None),
            )
            .order_by(SchoolClass.id)
            .limit(1)
        ).scalar_one_or_none()
        return counterpart.room if counterpart is not None else None

    def run(self, *, dry_run: bool = False, force: bool = False) -> FirstSemesterResult:
        term = self.term_provider.get()
        previous = find_previous_year_term(self.db, term)
        if previous is None:
            raise AllocationError(
                f"No term found for {term.period.value} of {term.year - 1}",
                details={"year": term.year - 1, "period": term.period.value},
            )

        result = FirstSemesterResult(current_term_id=term.id, previous_term_id=previous.id, dry_run=dry_run)
        sections = self._first_semester_sections(term.id)
        logger.info(
            "FIRST SEMESTER CARRY OVER START | term_id=%s | previous_term_id=%s | sections=%s | dry_run=%s | force=%s",
            term.id,
            previous.id,
            len(sections),
            dry_run,
            force,
        )

        for section in sections:
            result.processed += 1
            target = section.fusion.master if section.fusion is not None else section
            room = self._previous_room(previous.id, section)
            if room is None:
                result.not_found += 1
                continue
            if target.room_id == room.id:
                result.already_correct += 1
                continue
            if target.room_id is not None and not force:
                continue

            moved = target.room_id is not None
            occupants = self.db.execute(
                select(SchoolClass)
                .where(SchoolClass.school_term_id == term.id, SchoolClass.room_id == room.id)
                .options(selectinload(SchoolClass.schedules))
                .order_by(SchoolClass.id)
            ).scalars()
            for occupant in occupants:
                if occupant.id == target.id:
                    continue
                if target.fusion_id is not None and occupant.fusion_id == target.fusion_id:
                    continue
                if not sections_overlap(target, occupant):
                    continue
                result.evicted += 1
                result.actions.append(f"EVICT {_label(occupant)} from {room.name}")
                if not dry_run:
                    for member in occupant.allocation_members():
                        member.room_id = None

            result.actions.append(f"{'MOVED' if moved else 'ALLOCATED'} {_label(section)} -> {room.name}")
            if moved:
                result.moved += 1
            else:
                result.allocated += 1
            if not dry_run:
                for member in target.allocation_members():
                    member.room_id = room.id
                self.db.flush()

        if dry_run:
            self.db.rollback()
        else:
            self.db.commit()
        logger.info(
            "FIRST SEMESTER CARRY OVER COMPLETE | term_id=%s | allocated=%s | moved=%s | evicted=%s | already_correct=%s | not_found=%s",
            term.id,
            result.allocated,
            result.moved,
            result.evicted,
            result.already_correct,
            result.not_found,
        )
        return result
