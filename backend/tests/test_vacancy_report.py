from roomalloc.services.vacancy_report import build_vacancy_report

from builders import make_fusion, make_room, make_section, make_term


def test_rows_sorted_by_spare_seats(db_session):
    term = make_term(db_session)
    small = make_room(db_session, "B101", seat_count=40)
    large = make_room(db_session, "B201", seat_count=90)
    make_section(db_session, term, "MAT0111", "2026101", capacity=30, room=small, courses=(("45052", 1),))
    make_section(db_session, term, "MAC0110", "2026104", capacity=50, room=large)
    make_section(db_session, term, "MAT0121", "2026101", capacity=20)
    make_section(db_session, term, "MAT0130", "2026103", capacity=0, room=small)

    rows = build_vacancy_report(db_session, term.id, [1, 2])

    assert [(row.discipline_label, row.room, row.spare_seats) for row in rows] == [
        ("MAC0110", "B201", 40),
        ("MAT0111", "B101", 10),
    ]
    assert rows[0].section_suffix == "04"
    assert rows[0].is_first_year_mandatory is False
    assert rows[1].is_first_year_mandatory is True


def test_fused_sections_are_labelled_with_every_discipline(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101", seat_count=60)
    master = make_section(db_session, term, "MAT0111", "2026101", capacity=45, room=room)
    member = make_section(db_session, term, "MAC0110", "2026101", capacity=45, room=room)
    make_fusion(db_session, master, member)

    rows = build_vacancy_report(db_session, term.id, [1, 2])

    assert [row.discipline_label for row in rows] == ["MAC0110/MAT0111", "MAC0110/MAT0111"]
    assert {row.spare_seats for row in rows} == {15}


def test_overfull_rooms_show_negative_surplus(db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101", seat_count=30)
    make_section(db_session, term, capacity=45, room=room)

    (row,) = build_vacancy_report(db_session, term.id, [1, 2])

    assert row.spare_seats == -15
