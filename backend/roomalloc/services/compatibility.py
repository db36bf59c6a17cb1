from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.core.config import RoomRestriction
from roomalloc.models.room import Room
from roomalloc.models.school_class import SchoolClass
from roomalloc.services.intervals import WeeklyInterval, section_intervals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Booking:
    section_id: int
    fusion_id: int | None
    interval: WeeklyInterval


class RoomBookingIndex:
    """Per-room bookings of one term, loaded once and kept current while a pass assigns rooms."""

    def __init__(self) -> None:
        self._by_room: dict[int, list[Booking]] = defaultdict(list)
        self._room_of_section: dict[int, int] = {}

    @classmethod
    def load(cls, db: Session, term_id: int) -> "RoomBookingIndex":
        index = cls()
        sections = db.execute(
            select(SchoolClass)
            .where(SchoolClass.school_term_id == term_id, SchoolClass.room_id.is_not(None))
            .options(selectinload(SchoolClass.schedules))
        ).scalars()
        for section in sections:
            index.book(section.room_id, section)
        return index

    def bookings(self, room_id: int) -> list[Booking]:
        return self._by_room.get(room_id, [])

    def book(self, room_id: int, section: SchoolClass) -> None:
        if self._room_of_section.get(section.id) == room_id:
            return
        self.release(section)
        for interval in section_intervals(section):
            self._by_room[room_id].append(Booking(section.id, section.fusion_id, interval))
        self._room_of_section[section.id] = room_id

    def release(self, section: SchoolClass) -> None:
        room_id = self._room_of_section.pop(section.id, None)
        if room_id is None:
            return
        self._by_room[room_id] = [item for item in self._by_room[room_id] if item.section_id != section.id]


class RoomRestrictionPolicy:
    def __init__(self, restrictions: dict[str, RoomRestriction] | None = None) -> None:
        self._restrictions = restrictions or {}

    def allows(self, room: Room, section: SchoolClass) -> bool:
        restriction = self._restrictions.get(room.name)
        if restriction is None:
            return True
        if section.discipline_code in restriction.denied_discipline_codes:
            return False
        if restriction.allowed_discipline_codes:
            return section.discipline_code in restriction.allowed_discipline_codes
        return True


class CompatibilityChecker:
    """Decides whether a room can host a section without overlap, capacity or policy violations.

    The checker never writes to the database. Existing bookings come from a
    :class:`RoomBookingIndex` built once per pass; callers that assign rooms must
    call :meth:`book` so later checks see the new booking.
    """

    def __init__(self, index: RoomBookingIndex, policy: RoomRestrictionPolicy | None = None) -> None:
        self.index = index
        self.policy = policy or RoomRestrictionPolicy()

    @classmethod
    def for_term(
        cls,
        db: Session,
        term_id: int,
        restrictions: dict[str, RoomRestriction] | None = None,
    ) -> "CompatibilityChecker":
        return cls(RoomBookingIndex.load(db, term_id), RoomRestrictionPolicy(restrictions))

    def is_compatible(
        self,
        room: Room,
        section: SchoolClass,
        ignore_block_constraint: bool = False,
        ignore_capacity_constraint: bool = False,
    ) -> bool:
        if not ignore_capacity_constraint and section.enrollment_capacity is not None:
            if room.seat_count < section.enrollment_capacity:
                return False

        if not ignore_block_constraint and not self.policy.allows(room, section):
            return False

        intervals = section_intervals(section)
        if not intervals:
            return True
        for booking in self.index.bookings(room.id):
            if booking.section_id == section.id:
                continue
            if section.fusion_id is not None and booking.fusion_id == section.fusion_id:
                continue
            if any(interval.overlaps(booking.interval) for interval in intervals):
                return False
        return True

    def book(self, room: Room, section: SchoolClass) -> None:
        self.index.book(room.id, section)

    def release(self, section: SchoolClass) -> None:
        self.index.release(section)
