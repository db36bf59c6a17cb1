from __future__ import annotations

from datetime import date, timedelta
import logging
import re
from typing import Callable

from roomalloc.core.config import Settings
from roomalloc.core.exceptions import SalasRoomNotFoundError
from roomalloc.models.school_class import ClassSchedule, SchoolClass, SectionType, Weekday
from roomalloc.services.intervals import section_intervals

logger = logging.getLogger(__name__)

ROOMS_ENDPOINT = "/api/v1/salas"

DAY_ABBREVIATIONS = {
    Weekday.sunday: "Dom",
    Weekday.monday: "Seg",
    Weekday.tuesday: "Ter",
    Weekday.wednesday: "Qua",
    Weekday.thursday: "Qui",
    Weekday.friday: "Sex",
    Weekday.saturday: "Sab",
}

# Remote numbering: Sunday is 0.
REPEAT_DAY_NUMBERS = {
    Weekday.sunday: 0,
    Weekday.monday: 1,
    Weekday.tuesday: 2,
    Weekday.wednesday: 3,
    Weekday.thursday: 4,
    Weekday.friday: 5,
    Weekday.saturday: 6,
}

FOUR_CHAR_ROOM_PATTERN = re.compile(r"^[A-Z]\d{3}$")


def map_room_name(room_name: str, settings: Settings) -> str:
    """Translate a local room name into the remote system's naming."""
    if room_name in settings.salas_ignored_rooms:
        raise SalasRoomNotFoundError(room_name, room_name)
    special = settings.salas_room_special_cases.get(room_name)
    if special is not None:
        return special
    if settings.salas_pad_four_char_room_names and FOUR_CHAR_ROOM_PATTERN.match(room_name):
        return f"{room_name[0]}0{room_name[1:]}"
    return room_name


def to_remote_time(value: str) -> str:
    """``08:05`` -> ``8:05`` (hour without leading zero)."""
    hours, minutes = value.split(":")[:2]
    return f"{int(hours)}:{minutes}"


def to_remote_end_time(value: str) -> str:
    # Remote bookings end one minute early on the hour so back-to-back classes do not collide.
    hours, minutes = value.split(":")[:2]
    if minutes == "00":
        total = int(hours) * 60 - 1
        return f"{total // 60}:{total % 60:02d}"
    return to_remote_time(value)


def normalize_time(value: str) -> str:
    """Accepts ``G:i``, ``HH:MM`` or ``HH:MM:SS`` and returns ``HH:MM``."""
    hours, minutes = value.split(":")[:2]
    return f"{int(hours):02d}:{int(minutes):02d}"


def next_weekday_on_or_after(day: Weekday, start: date) -> date:
    # date.weekday() counts Monday as 0; shift to the Sunday-based numbering.
    target = REPEAT_DAY_NUMBERS[day]
    current = (start.weekday() + 1) % 7
    return start + timedelta(days=(target - current) % 7)


def _suffix(section: SchoolClass) -> str:
    return section.section_code[-2:]


def reservation_title(section: SchoolClass, settings: Settings, schedule: ClassSchedule | None = None) -> str:
    if section.fusion is not None and section.fusion.members:
        members = list(section.fusion.members)
        codes = {member.discipline_code for member in members}
        if len(codes) == 1:
            title = f"{members[0].discipline_code} " + "/".join(f"T.{_suffix(member)}" for member in members)
        elif all(member.section_type == SectionType.undergraduate for member in members):
            title = "/".join(f"{member.discipline_code} T.{_suffix(member)}" for member in members)
        else:
            master = section.fusion.master
            title = "/".join(member.discipline_code for member in members) + f" T.{_suffix(master)}"
    elif section.section_type == SectionType.graduate:
        title = f"{section.discipline_code} T.00"
    else:
        title = f"{section.discipline_code} T.{_suffix(section)}"

    name = f"{settings.salas_reservation_title_prefix} - {title}"
    if schedule is not None and len(section_intervals(section)) > 1:
        name += f" ({DAY_ABBREVIATIONS[Weekday(schedule.day_of_week)]})"
    return name


class ReservationMapper:
    """Builds remote reservation payloads for a section and resolves remote room ids."""

    def __init__(self, client, settings: Settings, today: Callable[[], date] = date.today) -> None:
        self.client = client
        self.settings = settings
        self.today = today
        self._room_ids: dict[str, int] | None = None

    def _load_remote_rooms(self) -> dict[str, int]:
        if self._room_ids is None:
            response = self.client.get(ROOMS_ENDPOINT)
            self._room_ids = {str(item["nome"]): int(item["id"]) for item in response.get("data") or []}
            logger.info("SALAS ROOMS LOADED | count=%s", len(self._room_ids))
        return self._room_ids

    def resolve_room_id(self, room_name: str) -> int:
        mapped = map_room_name(room_name, self.settings)
        room_id = self._load_remote_rooms().get(mapped)
        if room_id is None:
            logger.error("SALAS ROOM NOT FOUND | room=%s | mapped=%s", room_name, mapped)
            raise SalasRoomNotFoundError(room_name, mapped)
        return room_id

    def slot_payload(self, section: SchoolClass, schedule: ClassSchedule) -> dict:
        day = Weekday(schedule.day_of_week)
        return {
            "nome": reservation_title(section, self.settings, schedule),
            "data": next_weekday_on_or_after(day, self.today()).isoformat(),
            "horario_inicio": to_remote_time(schedule.start_time),
            "horario_fim": to_remote_end_time(schedule.end_time),
            "sala_id": self.resolve_room_id(section.room.name),
            "finalidade_id": self.settings.salas_finalidade_id,
            "tipo_responsaveis": self.settings.salas_tipo_responsaveis,
            "repeat_days": [REPEAT_DAY_NUMBERS[day]],
            "repeat_until": section.term.reservation_deadline.isoformat(),
        }

    def availability_dates(self, schedule: ClassSchedule, deadline: date) -> list[str]:
        """Dates of the next few weekly occurrences of ``schedule`` up to the term deadline."""
        first = next_weekday_on_or_after(Weekday(schedule.day_of_week), self.today())
        dates = []
        for week in range(self.settings.salas_availability_weeks):
            occurrence = first + timedelta(weeks=week)
            if occurrence <= deadline:
                dates.append(occurrence.isoformat())
        return dates
