from types import SimpleNamespace

from sqlalchemy import select

from roomalloc.core.config import RoomRestriction, get_settings
from roomalloc.models.school_class import SchoolClass, SectionType
from roomalloc.services.allocator import (
    STAGE_FIRST_YEAR,
    STAGE_GRADUATE,
    STAGE_PRIORITY,
    STAGE_UNDERGRADUATE,
    Allocator,
    rank_rooms_by_priority,
    rank_rooms_by_size,
)
from roomalloc.services.intervals import sections_overlap
from roomalloc.services.terms import CurrentTermProvider

from builders import add_priority, make_fusion, make_room, make_section, make_term


def _settings(**overrides):
    return get_settings().model_copy(update=overrides)


def _allocate(db, **overrides):
    return Allocator(db, CurrentTermProvider(db), _settings(**overrides)).allocate()


def _rooms_by_section(db, term):
    db.expire_all()
    sections = db.execute(select(SchoolClass).where(SchoolClass.school_term_id == term.id)).scalars()
    return {section.id: section.room_id for section in sections}


def _stage(result, name):
    return next(stage for stage in result.stages if stage.stage == name)


def _assert_no_room_overlaps(db, term):
    db.expire_all()
    sections = list(
        db.execute(
            select(SchoolClass).where(SchoolClass.school_term_id == term.id, SchoolClass.room_id.is_not(None))
        ).scalars()
    )
    for first in sections:
        for second in sections:
            if first.id >= second.id or first.room_id != second.room_id:
                continue
            if first.fusion_id is not None and first.fusion_id == second.fusion_id:
                continue
            assert not sections_overlap(first, second), (first.id, second.id)


def test_rank_rooms_by_priority_sums_weights_and_breaks_ties_by_id():
    rooms = {room_id: SimpleNamespace(id=room_id) for room_id in (1, 2, 3)}
    priorities = [
        SimpleNamespace(room_id=2, priority=3),
        SimpleNamespace(room_id=1, priority=5),
        SimpleNamespace(room_id=2, priority=2),
        SimpleNamespace(room_id=3, priority=1),
        SimpleNamespace(room_id=9, priority=50),
    ]
    ranked = rank_rooms_by_priority(priorities, rooms)
    assert [room.id for room in ranked] == [1, 2, 3]


def test_rank_rooms_by_size_breaks_ties_by_id():
    rooms = [
        SimpleNamespace(id=3, seat_count=40),
        SimpleNamespace(id=1, seat_count=40),
        SimpleNamespace(id=2, seat_count=80),
    ]
    assert [room.id for room in rank_rooms_by_size(rooms, descending=True)] == [2, 1, 3]
    assert [room.id for room in rank_rooms_by_size(rooms, descending=False)] == [1, 3, 2]


def test_smallest_sections_take_smallest_rooms_first(db_session):
    term = make_term(db_session)
    small_room = make_room(db_session, "A101", seat_count=30)
    large_room = make_room(db_session, "B101", seat_count=60)
    small = make_section(db_session, term, "MAT0111", "2026101", capacity=25)
    large = make_section(db_session, term, "MAT0121", "2026102", capacity=50)

    result = _allocate(db_session)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[small.id] == small_room.id
    assert assignment[large.id] == large_room.id
    assert _stage(result, STAGE_UNDERGRADUATE).assigned == 2
    assert result.unassigned_ids == []


def test_overlapping_sections_never_share_a_room(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=60)
    first = make_section(db_session, term, "MAT0111", "2026101", capacity=30)
    second = make_section(db_session, term, "MAT0121", "2026101", capacity=30, slots=(("Monday", "09:00", "11:00"),))
    third = make_section(db_session, term, "MAT0131", "2026101", capacity=30, slots=(("Monday", "10:00", "12:00"),))

    result = _allocate(db_session)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[first.id] is not None
    assert assignment[second.id] is None
    assert assignment[third.id] is not None
    assert result.unassigned_ids == [second.id]
    _assert_no_room_overlaps(db_session, term)


def test_sections_that_do_not_fit_stay_unassigned(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=20)
    section = make_section(db_session, term, capacity=45)

    result = _allocate(db_session)

    assert _rooms_by_section(db_session, term)[section.id] is None
    assert result.unassigned_ids == [section.id]


def test_fusion_is_allocated_through_master_and_members_inherit(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "A101", seat_count=60)
    master = make_section(db_session, term, "MAT0111", "2026101", capacity=30)
    member = make_section(db_session, term, "MAT0111", "2026102", capacity=30)
    outsider = make_section(db_session, term, "MAC0110", "2026101", capacity=35)
    make_fusion(db_session, master, member)

    _allocate(db_session)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[master.id] == room.id
    assert assignment[member.id] == room.id
    assert assignment[outsider.id] is None
    _assert_no_room_overlaps(db_session, term)


def test_reallocation_is_idempotent(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=30)
    make_room(db_session, "B101", seat_count=60)
    make_room(db_session, "C101", seat_count=100)
    make_section(db_session, term, "MAT0111", "2026101", capacity=25)
    make_section(db_session, term, "MAT0121", "2026101", capacity=55)
    make_section(db_session, term, "MAT0131", "2026101", capacity=90, slots=(("Monday", "09:00", "11:00"),))
    make_section(db_session, term, "MAT5701", "2026101", capacity=None, section_type=SectionType.graduate)

    _allocate(db_session)
    first = _rooms_by_section(db_session, term)
    _allocate(db_session)
    second = _rooms_by_section(db_session, term)

    assert first == second


def test_external_sections_are_never_assigned(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "A101", seat_count=60)
    external = make_section(db_session, term, "FLC0101", "2026101", is_external=True, room=room)

    result = _allocate(db_session)

    assert _rooms_by_section(db_session, term)[external.id] is None
    assert external.id not in result.unassigned_ids


def test_excluded_rooms_are_skipped(db_session):
    term = make_term(db_session)
    make_room(db_session, "B05", seat_count=200)
    section = make_section(db_session, term)

    _allocate(db_session, allocation_excluded_room_names=["B05"])

    assert _rooms_by_section(db_session, term)[section.id] is None


def test_priority_stage_wins_over_capacity_order(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=30)
    preferred = make_room(db_session, "C101", seat_count=120)
    section = make_section(db_session, term, capacity=25)
    add_priority(db_session, section, preferred, 3)

    result = _allocate(db_session)

    assert _rooms_by_section(db_session, term)[section.id] == preferred.id
    assert _stage(result, STAGE_PRIORITY).assigned == 1


def test_exempt_disciplines_skip_priority_and_capacity_stages(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "A101", seat_count=60)
    section = make_section(db_session, term, "MAE0116", "2026101")
    add_priority(db_session, section, room, 5)

    result = _allocate(db_session, allocation_exempt_discipline_codes=["MAE0116"])

    assert _rooms_by_section(db_session, term)[section.id] is None
    assert result.unassigned_ids == [section.id]


def test_graduate_sections_are_placed_in_their_own_stage(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=30)
    make_room(db_session, "B101", seat_count=60)
    graduate = make_section(db_session, term, "MAT5701", "2026101", capacity=None, section_type=SectionType.graduate)
    unknown = make_section(db_session, term, "MAT0111", "2026101", capacity=None)

    result = _allocate(db_session, allocation_shuffle_seed=11)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[graduate.id] is not None
    assert _stage(result, STAGE_GRADUATE).assigned_ids == [graduate.id]
    # Undergraduate sections without a known enrollment are left to the operator.
    assert assignment[unknown.id] is None


def test_first_year_group_shares_the_priority_room(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=100)
    preferred = make_room(db_session, "B101", seat_count=60)
    calculus = make_section(db_session, term, "MAT0111", "2026145", courses=[("45052", 1)])
    programming = make_section(
        db_session,
        term,
        "MAC0110",
        "2026145",
        slots=(("Tuesday", "08:00", "10:00"),),
        courses=[("45052", 1)],
    )
    add_priority(db_session, programming, preferred, 2)

    result = _allocate(db_session)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[calculus.id] == preferred.id
    assert assignment[programming.id] == preferred.id
    assert sorted(_stage(result, STAGE_FIRST_YEAR).assigned_ids) == sorted([calculus.id, programming.id])


def test_first_year_group_is_all_or_nothing(db_session):
    term = make_term(db_session)
    make_room(db_session, "A101", seat_count=100)
    make_room(db_session, "B101", seat_count=60)
    # The group overlaps itself, so no single room can take all of it.
    first = make_section(db_session, term, "MAT0111", "2026145", courses=[("45052", 1)])
    second = make_section(db_session, term, "MAC0110", "2026145", courses=[("45052", 1)])

    result = _allocate(db_session)

    assert _stage(result, STAGE_FIRST_YEAR).assigned == 0
    assignment = _rooms_by_section(db_session, term)
    # The capacity stage still places them individually.
    assert assignment[first.id] is not None
    assert assignment[second.id] is not None
    assert assignment[first.id] != assignment[second.id]


def test_room_restrictions_are_honoured(db_session):
    term = make_term(db_session)
    reserved = make_room(db_session, "A101", seat_count=30)
    open_room = make_room(db_session, "B101", seat_count=60)
    section = make_section(db_session, term, "MAC0110", "2026101", capacity=25)

    _allocate(db_session, room_restrictions={"A101": RoomRestriction(allowed_discipline_codes=["MAT0111"])})

    assignment = _rooms_by_section(db_session, term)
    assert assignment[section.id] == open_room.id
    assert assignment[section.id] != reserved.id


def test_sunday_only_sections_share_a_room(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "A101", seat_count=60)
    first = make_section(db_session, term, "MAT0111", "2026101", slots=(("Sunday", "08:00", "10:00"),))
    second = make_section(db_session, term, "MAT0121", "2026101", slots=(("Sunday", "08:00", "10:00"),))

    _allocate(db_session)

    assignment = _rooms_by_section(db_session, term)
    assert assignment[first.id] == room.id
    assert assignment[second.id] == room.id
