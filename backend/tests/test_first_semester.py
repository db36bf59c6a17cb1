import pytest

from roomalloc.core.exceptions import AllocationError
from roomalloc.models.school_class import SchoolClass
from roomalloc.services.first_semester import FirstSemesterCarryOver
from roomalloc.services.terms import CurrentTermProvider

from builders import make_fusion, make_room, make_section, make_term

FIRST_SEMESTER = (("45052", 1),)


@pytest.fixture()
def terms(db_session):
    previous = make_term(db_session, year=2025)
    current = make_term(db_session, year=2026)
    return previous, current


def _run(db, **kwargs):
    return FirstSemesterCarryOver(db, CurrentTermProvider(db)).run(**kwargs)


def _room_id(db, section_id):
    db.expire_all()
    return db.get(SchoolClass, section_id).room_id


def test_allocates_the_room_used_a_year_earlier(db_session, terms):
    previous, current = terms
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    section = make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER)

    result = _run(db_session)

    assert result.previous_term_id == previous.id
    assert result.processed == 1
    assert result.allocated == 1
    assert result.actions == ["ALLOCATED MAT0111 (T.2026101) -> B101"]
    assert _room_id(db_session, section.id) == room.id


def test_evicts_overlapping_occupants(db_session, terms):
    previous, current = terms
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    section = make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER)
    occupant = make_section(db_session, current, "MAC0110", "2026104", room=room)
    neighbour = make_section(db_session, current, "MAC0115", "2026105", slots=(("Tuesday", "08:00", "10:00"),), room=room)

    result = _run(db_session)

    assert result.evicted == 1
    assert result.actions[0] == "EVICT MAC0110 (T.2026104) from B101"
    assert _room_id(db_session, occupant.id) is None
    assert _room_id(db_session, neighbour.id) == room.id
    assert _room_id(db_session, section.id) == room.id


def test_dry_run_reports_without_writing(db_session, terms):
    previous, current = terms
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    section = make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER)
    occupant = make_section(db_session, current, "MAC0110", "2026104", room=room)

    result = _run(db_session, dry_run=True)

    assert result.dry_run is True
    assert result.allocated == 1
    assert result.evicted == 1
    assert _room_id(db_session, section.id) is None
    assert _room_id(db_session, occupant.id) == room.id


def test_assigned_sections_move_only_when_forced(db_session, terms):
    previous, current = terms
    old_room = make_room(db_session, "B101")
    other_room = make_room(db_session, "B102")
    make_section(db_session, previous, section_code="2025101", room=old_room)
    section = make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER, room=other_room)

    result = _run(db_session)
    assert result.moved == 0
    assert result.actions == []
    assert _room_id(db_session, section.id) == other_room.id

    result = _run(db_session, force=True)
    assert result.moved == 1
    assert result.actions == ["MOVED MAT0111 (T.2026101) -> B101"]
    assert _room_id(db_session, section.id) == old_room.id


def test_counts_missing_and_matching_counterparts(db_session, terms):
    previous, current = terms
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER, room=room)
    make_section(db_session, current, "MAC0110", "2026104", courses=FIRST_SEMESTER)

    result = _run(db_session)

    assert result.processed == 2
    assert result.already_correct == 1
    assert result.not_found == 1


def test_fused_sections_follow_the_master(db_session, terms):
    previous, current = terms
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    master = make_section(db_session, current, section_code="2026101", courses=FIRST_SEMESTER)
    member = make_section(db_session, current, "MAT0112", "2026102")
    make_fusion(db_session, master, member)

    _run(db_session)

    assert _room_id(db_session, master.id) == room.id
    assert _room_id(db_session, member.id) == room.id


def test_missing_previous_term_is_an_error(db_session):
    make_term(db_session, year=2026)

    with pytest.raises(AllocationError) as exc_info:
        _run(db_session)
    assert exc_info.value.details == {"year": 2025, "period": "first_half"}
