from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
from typing import Callable

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomalloc.core.config import Settings
from roomalloc.core.exceptions import ReservationCreationError, SalasApiError
from roomalloc.models.reservation import LegacyReservation, ReservationBackendKind
from roomalloc.models.school_class import ClassSchedule, SchoolClass, Weekday
from roomalloc.services.intervals import WeeklyInterval
from roomalloc.services.reservation_mapper import (
    ReservationMapper,
    normalize_time,
    reservation_title,
    to_remote_end_time,
)
from roomalloc.services.salas_client import SalasApiClient

logger = logging.getLogger(__name__)

RESERVATIONS_ENDPOINT = "/api/v1/reservas"


@dataclass(frozen=True)
class ReservationRef:
    external_id: str
    class_schedule_id: int | None = None
    recurrent: bool = False


def operational_schedules(section: SchoolClass) -> list[ClassSchedule]:
    return [schedule for schedule in section.schedules if Weekday(schedule.day_of_week) is not Weekday.sunday]


def _slots_of(section: SchoolClass, schedules: list[ClassSchedule] | None) -> list[ClassSchedule]:
    return operational_schedules(section) if schedules is None else schedules


def _slot(schedule: ClassSchedule) -> dict:
    return schedule.as_dict()


class ReservationBackend:
    """Where reservations live. One backend is chosen per job and never swapped mid-run."""

    kind: ReservationBackendKind

    def find_conflicting_slot(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> dict | None:
        raise NotImplementedError

    def check_availability(self, section: SchoolClass) -> bool:
        return self.find_conflicting_slot(section) is None

    def create_reservations(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> list[ReservationRef]:
        """One reservation per slot in ``schedules``, all operational slots by default.

        Any failure part-way raises :class:`ReservationCreationError` whose
        ``created`` lists the references made before the failing slot.
        """
        raise NotImplementedError

    def cancel_reservation(self, ref: ReservationRef) -> None:
        raise NotImplementedError

    def health_check(self) -> bool:
        raise NotImplementedError


class SalasReservationBackend(ReservationBackend):
    kind = ReservationBackendKind.api

    def __init__(self, client: SalasApiClient, mapper: ReservationMapper) -> None:
        self.client = client
        self.mapper = mapper

    def find_conflicting_slot(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> dict | None:
        room_id = self.mapper.resolve_room_id(section.room.name)
        deadline = section.term.reservation_deadline
        for schedule in _slots_of(section, schedules):
            # Compare with the same one-minute-early end the remote bookings use.
            start = normalize_time(schedule.start_time)
            end = normalize_time(to_remote_end_time(schedule.end_time))
            for day in self.mapper.availability_dates(schedule, deadline):
                response = self.client.get(RESERVATIONS_ENDPOINT, params={"sala": room_id, "data": day})
                for booking in response.get("data") or []:
                    booking_start = normalize_time(str(booking["horario_inicio"]))
                    booking_end = normalize_time(str(booking["horario_fim"]))
                    if start < booking_end and booking_start < end:
                        logger.info(
                            "SALAS SLOT CONFLICT | school_class_id=%s | room=%s | date=%s | remote_id=%s",
                            section.id,
                            section.room.name,
                            day,
                            booking.get("id"),
                        )
                        return {
                            **_slot(schedule),
                            "date": day,
                            "conflicting_reservation": {
                                "id": booking.get("id"),
                                "nome": booking.get("nome"),
                                "horario_inicio": booking.get("horario_inicio"),
                                "horario_fim": booking.get("horario_fim"),
                            },
                        }
        return None

    def create_reservations(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> list[ReservationRef]:
        created: list[ReservationRef] = []
        for schedule in _slots_of(section, schedules):
            try:
                payload = self.mapper.slot_payload(section, schedule)
                response = self.client.post(RESERVATIONS_ENDPOINT, payload)
                data = response.get("data") or {}
                if "id" not in data:
                    raise SalasApiError("Create reservation response did not include an id")
            except Exception as exc:
                message = exc.message if isinstance(exc, SalasApiError) else str(exc)
                raise ReservationCreationError(
                    f"Failed to create reservation for section {section.id}: {message}",
                    created=created,
                    details={"school_class_id": section.id, "slot": _slot(schedule), "error": message},
                ) from exc
            created.append(
                ReservationRef(
                    external_id=str(data["id"]),
                    class_schedule_id=schedule.id,
                    recurrent=bool(data.get("recurrent", False)),
                )
            )
            logger.info(
                "SALAS RESERVATION CREATED | school_class_id=%s | remote_id=%s | recurrent=%s",
                section.id,
                data["id"],
                data.get("recurrent", False),
            )
        return created

    def cancel_reservation(self, ref: ReservationRef) -> None:
        params = {"purge": "true"} if ref.recurrent else None
        self.client.delete(f"{RESERVATIONS_ENDPOINT}/{ref.external_id}", params=params)
        logger.info("SALAS RESERVATION CANCELLED | remote_id=%s | purge=%s", ref.external_id, ref.recurrent)

    def health_check(self) -> bool:
        return self.client.test_connection()


class LegacyReservationBackend(ReservationBackend):
    """Direct writes into the local ``legacy_reservations`` table; each write is committed on its own."""

    kind = ReservationBackendKind.legacy

    def __init__(self, db: Session, settings: Settings, today: Callable[[], date] = date.today) -> None:
        self.db = db
        self.settings = settings
        self.today = today

    def find_conflicting_slot(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> dict | None:
        starts_on = self.today()
        ends_on = section.term.reservation_deadline
        existing = self.db.execute(
            select(LegacyReservation).where(
                LegacyReservation.room_id == section.room_id,
                LegacyReservation.starts_on <= ends_on,
                LegacyReservation.ends_on >= starts_on,
            )
        ).scalars()
        bookings = [
            booking
            for booking in existing
            if booking.school_class_id != section.id
        ]
        for schedule in _slots_of(section, schedules):
            wanted = WeeklyInterval.from_schedule(schedule)
            for booking in bookings:
                other = WeeklyInterval(Weekday(booking.day_of_week), booking.start_time, booking.end_time)
                if wanted.overlaps(other):
                    return {**_slot(schedule), "conflicting_reservation": {"id": booking.id, "title": booking.title}}
        return None

    def create_reservations(
        self, section: SchoolClass, schedules: list[ClassSchedule] | None = None
    ) -> list[ReservationRef]:
        created: list[ReservationRef] = []
        starts_on = self.today()
        for schedule in _slots_of(section, schedules):
            row = LegacyReservation(
                room_id=section.room_id,
                school_class_id=section.id,
                title=reservation_title(section, self.settings, schedule),
                day_of_week=schedule.day_of_week,
                start_time=schedule.start_time,
                end_time=schedule.end_time,
                starts_on=starts_on,
                ends_on=section.term.reservation_deadline,
            )
            try:
                self.db.add(row)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise ReservationCreationError(
                    f"Failed to write legacy reservation for section {section.id}",
                    created=created,
                    details={"school_class_id": section.id, "slot": _slot(schedule)},
                ) from exc
            created.append(ReservationRef(external_id=str(row.id), class_schedule_id=schedule.id))
        return created

    def cancel_reservation(self, ref: ReservationRef) -> None:
        row = self.db.get(LegacyReservation, int(ref.external_id))
        if row is None:
            logger.warning("LEGACY RESERVATION ALREADY GONE | id=%s", ref.external_id)
            return
        self.db.delete(row)
        self.db.commit()

    def health_check(self) -> bool:
        try:
            self.db.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("LEGACY RESERVATION STORE UNHEALTHY")
            return False
        return True


def build_reservation_backend(db: Session, settings: Settings) -> ReservationBackend:
    """Picks the backend from ``salas_use_api``; there is no fallback from one to the other."""
    if settings.salas_use_api:
        client = SalasApiClient(settings)
        return SalasReservationBackend(client, ReservationMapper(client, settings))
    return LegacyReservationBackend(db, settings)
