from datetime import date

import pytest

from roomalloc.core.config import get_settings
from roomalloc.core.exceptions import SalasRoomNotFoundError
from roomalloc.models.room import Room
from roomalloc.models.school_class import ClassSchedule, Fusion, SchoolClass, SectionType, Weekday
from roomalloc.models.term import SchoolTerm, TermPeriod
from roomalloc.services.reservation_mapper import (
    ReservationMapper,
    map_room_name,
    next_weekday_on_or_after,
    normalize_time,
    reservation_title,
    to_remote_end_time,
    to_remote_time,
)

WEDNESDAY = date(2026, 3, 4)


class FakeClient:
    def __init__(self, rooms):
        self.rooms = rooms
        self.get_calls = []

    def get(self, endpoint, params=None):
        self.get_calls.append((endpoint, params))
        return {"data": self.rooms}


def _section(discipline_code="MAT0111", section_code="2026101", *slots, section_type=SectionType.undergraduate):
    section = SchoolClass(
        id=1,
        discipline_code=discipline_code,
        section_code=section_code,
        section_type=section_type,
    )
    section.schedules = [
        ClassSchedule(id=index + 10, day_of_week=Weekday(day), start_time=start, end_time=end)
        for index, (day, start, end) in enumerate(slots or (("Monday", "08:00", "10:00"),))
    ]
    return section


def test_room_names_are_translated():
    settings = get_settings().model_copy(update={"salas_ignored_rooms": ["B16"]})
    assert map_room_name("B123", settings) == "B0123"
    assert map_room_name("B05", settings) == "B05"
    assert map_room_name("Auditório Jacy Monteiro", settings) == "AJM"
    with pytest.raises(SalasRoomNotFoundError):
        map_room_name("B16", settings)


def test_padding_can_be_disabled():
    settings = get_settings().model_copy(update={"salas_pad_four_char_room_names": False})
    assert map_room_name("B123", settings) == "B123"


def test_time_formatting():
    assert to_remote_time("08:05") == "8:05"
    assert to_remote_time("14:30") == "14:30"
    assert to_remote_end_time("10:00") == "9:59"
    assert to_remote_end_time("10:40") == "10:40"
    assert normalize_time("8:05") == "08:05"
    assert normalize_time("14:30:00") == "14:30"


def test_next_weekday_on_or_after():
    assert next_weekday_on_or_after(Weekday.wednesday, WEDNESDAY) == WEDNESDAY
    assert next_weekday_on_or_after(Weekday.monday, WEDNESDAY) == date(2026, 3, 9)
    assert next_weekday_on_or_after(Weekday.saturday, WEDNESDAY) == date(2026, 3, 7)


def test_titles_for_plain_sections():
    settings = get_settings()
    assert reservation_title(_section(), settings) == "Aula - MAT0111 T.01"
    graduate = _section("MAT5701", "2026101", section_type=SectionType.graduate)
    assert reservation_title(graduate, settings) == "Aula - MAT5701 T.00"


def test_multi_slot_titles_carry_the_day():
    settings = get_settings()
    section = _section("MAT0111", "2026101", ("Monday", "08:00", "10:00"), ("Wednesday", "08:00", "10:00"))
    assert reservation_title(section, settings, section.schedules[1]) == "Aula - MAT0111 T.01 (Qua)"


def test_fusion_titles():
    settings = get_settings()
    first = _section("MAT0111", "2026101")
    second = _section("MAT0111", "2026102")
    second.id = 2
    fusion = Fusion(id=1, master_id=1)
    fusion.master = first
    fusion.members = [first, second]
    assert reservation_title(first, settings) == "Aula - MAT0111 T.01/T.02"

    other = _section("MAC0110", "2026104")
    other.id = 3
    fusion.members = [first, other]
    assert reservation_title(first, settings) == "Aula - MAT0111 T.01/MAC0110 T.04"

    graduate = _section("MAT5701", "2026109", section_type=SectionType.graduate)
    graduate.id = 4
    fusion.members = [first, graduate]
    assert reservation_title(first, settings) == "Aula - MAT0111/MAT5701 T.01"


def test_slot_payload_and_room_cache():
    settings = get_settings()
    client = FakeClient([{"id": 7, "nome": "B0123"}, {"id": 8, "nome": "AJM"}])
    mapper = ReservationMapper(client, settings, today=lambda: WEDNESDAY)
    section = _section()
    section.room = Room(id=1, name="B123", seat_count=50)
    section.term = SchoolTerm(id=1, year=2026, period=TermPeriod.first_half, reservation_deadline=date(2026, 7, 10))

    payload = mapper.slot_payload(section, section.schedules[0])

    assert payload == {
        "nome": "Aula - MAT0111 T.01",
        "data": "2026-03-09",
        "horario_inicio": "8:00",
        "horario_fim": "9:59",
        "sala_id": 7,
        "finalidade_id": 1,
        "tipo_responsaveis": "eu",
        "repeat_days": [1],
        "repeat_until": "2026-07-10",
    }
    assert mapper.resolve_room_id("Auditório Jacy Monteiro") == 8
    assert len(client.get_calls) == 1

    with pytest.raises(SalasRoomNotFoundError):
        mapper.resolve_room_id("Z999")


def test_availability_dates_stop_at_deadline():
    settings = get_settings().model_copy(update={"salas_availability_weeks": 4})
    mapper = ReservationMapper(FakeClient([]), settings, today=lambda: WEDNESDAY)
    schedule = ClassSchedule(day_of_week=Weekday.monday, start_time="08:00", end_time="10:00")

    assert mapper.availability_dates(schedule, date(2026, 3, 20)) == ["2026-03-09", "2026-03-16"]
