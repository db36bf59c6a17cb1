from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import logging
import random
from time import perf_counter
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.core.config import Settings
from roomalloc.models.priority import Priority
from roomalloc.models.room import Room
from roomalloc.models.school_class import Fusion, Obligation, SchoolClass, SectionType
from roomalloc.models.term import SchoolTerm
from roomalloc.services.compatibility import CompatibilityChecker
from roomalloc.services.terms import TermProvider

logger = logging.getLogger(__name__)


STAGE_RESET = "reset"
STAGE_FIRST_YEAR = "first_year_mandatory"
STAGE_PRIORITY = "priority"
STAGE_GRADUATE = "graduate"
STAGE_UNDERGRADUATE = "undergraduate_by_capacity"


@dataclass
class StageOutcome:
    stage: str
    assigned_ids: list[int] = field(default_factory=list)

    @property
    def assigned(self) -> int:
        return len(self.assigned_ids)


@dataclass
class AllocationResult:
    term_id: int
    stages: list[StageOutcome] = field(default_factory=list)
    unassigned_ids: list[int] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return sum(stage.assigned for stage in self.stages)

    def as_dict(self) -> dict:
        return {
            "term_id": self.term_id,
            "stages": [{"stage": stage.stage, "assigned": stage.assigned} for stage in self.stages],
            "assigned_count": self.assigned_count,
            "unassigned_ids": self.unassigned_ids,
        }


def rank_rooms_by_priority(priorities: Iterable[Priority], rooms_by_id: dict[int, Room]) -> list[Room]:
    """Rooms ordered by summed priority weight, highest first; ties go to the lower room id."""
    totals: dict[int, int] = defaultdict(int)
    for priority in priorities:
        totals[priority.room_id] += priority.priority
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [rooms_by_id[room_id] for room_id, _ in ordered if room_id in rooms_by_id]


def rank_rooms_by_size(rooms: Iterable[Room], *, descending: bool) -> list[Room]:
    if descending:
        return sorted(rooms, key=lambda room: (-room.seat_count, room.id))
    return sorted(rooms, key=lambda room: (room.seat_count, room.id))


def is_first_year_mandatory(section: SchoolClass, semesters: Iterable[int]) -> bool:
    semesters = set(semesters)
    return any(
        info.obligation == Obligation.mandatory and info.semester in semesters
        for info in section.course_informations
    )


class Allocator:
    """Assigns rooms to every non-external section of the latest term.

    The pass runs in fixed stages, each committed before the next starts, and a
    section assigned by an earlier stage is never revisited. A fusion group moves
    as one unit: compatibility is evaluated on its master only and the chosen room
    is written to every member.
    """

    def __init__(self, db: Session, term_provider: TermProvider, settings: Settings) -> None:
        self.db = db
        self.term_provider = term_provider
        self.settings = settings

    def allocate(self, excluded_room_names: Iterable[str] | None = None) -> AllocationResult:
        term = self.term_provider.get()
        excluded = set(self.settings.allocation_excluded_room_names if excluded_room_names is None else excluded_room_names)
        started = perf_counter()
        logger.info(
            "ALLOCATION START | term_id=%s | year=%s | period=%s | excluded_rooms=%s",
            term.id,
            term.year,
            term.period.value,
            sorted(excluded),
        )

        sections = self._load_sections(term.id)
        self._reset(sections)

        rooms = list(self.db.execute(select(Room).order_by(Room.id)).scalars())
        self._rooms = [room for room in rooms if room.name not in excluded]
        self._rooms_by_id = {room.id: room for room in self._rooms}
        self._sections_by_id = {section.id: section for section in sections}
        self._exempt = set(self.settings.allocation_exempt_discipline_codes)
        self.checker = CompatibilityChecker.for_term(self.db, term.id, self.settings.room_restrictions)

        result = AllocationResult(term_id=term.id)
        result.stages.append(StageOutcome(STAGE_RESET))
        for stage_name, stage in (
            (STAGE_FIRST_YEAR, self._first_year_stage),
            (STAGE_PRIORITY, self._priority_stage),
            (STAGE_GRADUATE, self._graduate_stage),
            (STAGE_UNDERGRADUATE, self._undergraduate_stage),
        ):
            outcome = StageOutcome(stage_name)
            stage(sections, term, outcome)
            self.db.commit()
            result.stages.append(outcome)
            logger.info(
                "ALLOCATION STAGE COMPLETE | term_id=%s | stage=%s | assigned=%s",
                term.id,
                stage_name,
                outcome.assigned,
            )

        result.unassigned_ids = sorted(
            section.id for section in sections if not section.is_external and section.room_id is None
        )
        logger.info(
            "ALLOCATION COMPLETE | term_id=%s | assigned=%s | unassigned=%s | wall_ms=%s",
            term.id,
            result.assigned_count,
            len(result.unassigned_ids),
            int((perf_counter() - started) * 1000),
        )
        return result

    def _load_sections(self, term_id: int) -> list[SchoolClass]:
        return list(
            self.db.execute(
                select(SchoolClass)
                .where(SchoolClass.school_term_id == term_id)
                .options(
                    selectinload(SchoolClass.schedules),
                    selectinload(SchoolClass.course_informations),
                    selectinload(SchoolClass.fusion).selectinload(Fusion.members),
                )
                .order_by(SchoolClass.id)
            ).scalars()
        )

    def _reset(self, sections: list[SchoolClass]) -> None:
        for section in sections:
            section.room_id = None
        self.db.commit()

    # Helpers shared by the stages.

    def _unit_of(self, section: SchoolClass) -> SchoolClass:
        """The section that stands for its whole fusion group during allocation."""
        if section.fusion is None:
            return section
        master = self._sections_by_id.get(section.fusion.master_id)
        return master if master is not None else section

    def _candidate(self, section: SchoolClass, *, honor_exemption: bool) -> bool:
        if section.is_external or section.room_id is not None:
            return False
        if section.is_fusion_member:
            return False
        if honor_exemption and section.discipline_code in self._exempt:
            return False
        return True

    def _assign(self, room: Room, unit: SchoolClass, outcome: StageOutcome) -> None:
        for member in unit.allocation_members():
            if member.is_external:
                continue
            member.room_id = room.id
            self.checker.book(room, member)
            outcome.assigned_ids.append(member.id)

    def _release(self, unit: SchoolClass) -> None:
        for member in unit.allocation_members():
            member.room_id = None
            self.checker.release(member)

    # Stages.

    def _first_year_stage(self, sections: list[SchoolClass], term: SchoolTerm, outcome: StageOutcome) -> None:
        semesters = self.settings.allocation_first_year_semesters
        for suffix in self.settings.allocation_first_year_groups:
            group = [
                section
                for section in sections
                if not section.is_external
                and section.section_code.endswith(suffix)
                and is_first_year_mandatory(section, semesters)
            ]
            units: list[SchoolClass] = []
            for section in group:
                unit = self._unit_of(section)
                if unit.room_id is None and not unit.is_external and unit not in units:
                    units.append(unit)
            if not units:
                continue

            group_ids = sorted(section.id for section in group)
            priorities = self.db.execute(
                select(Priority).where(Priority.school_class_id.in_(group_ids))
            ).scalars()
            ranked = rank_rooms_by_priority(priorities, self._rooms_by_id)
            if not ranked:
                ranked = rank_rooms_by_size(self._rooms, descending=True)

            chosen = None
            for room in ranked:
                # Book tentatively so the group cannot overlap itself inside one room.
                tentative = StageOutcome(outcome.stage)
                fits = True
                for unit in units:
                    if not self.checker.is_compatible(room, unit):
                        fits = False
                        break
                    self._assign(room, unit, tentative)
                if fits:
                    chosen = room
                    outcome.assigned_ids.extend(tentative.assigned_ids)
                    break
                for unit in units:
                    if unit.room_id == room.id:
                        self._release(unit)

            logger.info(
                "ALLOCATION FIRST YEAR GROUP | term_id=%s | suffix=%s | sections=%s | room=%s",
                term.id,
                suffix,
                len(units),
                chosen.name if chosen is not None else None,
            )

    def _priority_stage(self, sections: list[SchoolClass], term: SchoolTerm, outcome: StageOutcome) -> None:
        priorities = self.db.execute(
            select(Priority)
            .join(SchoolClass, SchoolClass.id == Priority.school_class_id)
            .where(SchoolClass.school_term_id == term.id)
            .order_by(Priority.priority.desc(), Priority.id.asc())
        ).scalars()
        for priority in priorities:
            room = self._rooms_by_id.get(priority.room_id)
            section = self._sections_by_id.get(priority.school_class_id)
            if room is None or section is None:
                continue
            if not self._candidate(section, honor_exemption=True):
                continue
            if self.checker.is_compatible(room, section):
                self._assign(room, section, outcome)

    def _graduate_stage(self, sections: list[SchoolClass], term: SchoolTerm, outcome: StageOutcome) -> None:
        seed = self.settings.allocation_shuffle_seed
        rng = random.Random(seed if seed is not None else term.id)
        for section in sections:
            if section.section_type != SectionType.graduate:
                continue
            if not self._candidate(section, honor_exemption=False):
                continue
            rooms = list(self._rooms)
            rng.shuffle(rooms)
            for room in rooms:
                if self.checker.is_compatible(room, section):
                    self._assign(room, section, outcome)
                    break

    def _undergraduate_stage(self, sections: list[SchoolClass], term: SchoolTerm, outcome: StageOutcome) -> None:
        remaining = [
            section
            for section in sections
            if section.section_type == SectionType.undergraduate and section.enrollment_capacity is not None
        ]
        remaining.sort(key=lambda section: (section.enrollment_capacity, section.id))
        rooms = rank_rooms_by_size(self._rooms, descending=False)
        for section in remaining:
            if not self._candidate(section, honor_exemption=True):
                continue
            for room in rooms:
                if self.checker.is_compatible(room, section):
                    self._assign(room, section, outcome)
                    break
