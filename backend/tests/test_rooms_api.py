from sqlalchemy import select

from roomalloc.models.activity_log import ActivityLog
from roomalloc.models.school_class import SchoolClass

from builders import make_fusion, make_room, make_section, make_term


def _room_id(db, section_id):
    db.expire_all()
    return db.get(SchoolClass, section_id).room_id


def test_room_crud(client):
    created = client.post("/api/rooms/", json={"name": "B101", "seat_count": 50})
    assert created.status_code == 201
    room_id = created.json()["id"]

    duplicate = client.post("/api/rooms/", json={"name": "B101", "seat_count": 20})
    assert duplicate.status_code == 409

    client.post("/api/rooms/", json={"name": "A001", "seat_count": 30})
    assert [room["name"] for room in client.get("/api/rooms/").json()] == ["A001", "B101"]

    updated = client.put(f"/api/rooms/{room_id}", json={"seat_count": 60})
    assert updated.json()["seat_count"] == 60
    assert client.put(f"/api/rooms/{room_id}", json={"name": "A001"}).status_code == 409

    assert client.delete(f"/api/rooms/{room_id}").json() == {"success": True}
    assert client.delete(f"/api/rooms/{room_id}").status_code == 404


def test_distribute_returns_summary_for_json_clients(client, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101", seat_count=50)
    section = make_section(db_session, term, capacity=40)

    response = client.post("/api/rooms/distribute", headers={"Accept": "application/json"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["term_id"] == term.id
    assert payload["assigned_count"] == 1
    assert payload["unassigned_ids"] == []
    assert _room_id(db_session, section.id) == room.id
    audit = db_session.execute(select(ActivityLog).where(ActivityLog.action == "rooms.distribute")).scalar_one()
    assert audit.actor == "system"


def test_distribute_redirects_browsers(client, db_session):
    make_term(db_session)
    make_room(db_session, "B101")

    response = client.post("/api/rooms/distribute", headers={"Accept": "text/html"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/api/rooms/"


def test_distribute_without_term_is_not_found(client):
    response = client.post("/api/rooms/distribute", headers={"Accept": "application/json"})
    assert response.status_code == 404
    assert response.json()["message"] == "SchoolTerm with id latest not found"


def test_compatible_lists_sections_that_fit_the_free_time(client, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101", seat_count=10)
    make_section(db_session, term, "MAT0111", "2026101", room=room)
    clashing = make_section(db_session, term, "MAT0112", "2026101")
    free = make_section(db_session, term, "MAT0113", "2026101", slots=(("Tuesday", "08:00", "10:00"),), capacity=80)
    make_section(db_session, term, "MAT0114", "2026101", slots=(("Tuesday", "08:00", "10:00"),), is_external=True)
    master = make_section(db_session, term, "MAT0115", "2026101", slots=(("Friday", "08:00", "10:00"),))
    member = make_section(db_session, term, "MAT0115", "2026102", slots=(("Friday", "08:00", "10:00"),))
    make_fusion(db_session, master, member)

    response = client.post("/api/rooms/compatible", json={"room_id": room.id})

    assert response.status_code == 200
    ids = [section["id"] for section in response.json()]
    assert ids == [free.id, master.id]
    assert clashing.id not in ids


def test_manual_allocation_moves_the_whole_fusion(client, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101")
    master = make_section(db_session, term, "MAT0111", "2026101")
    member = make_section(db_session, term, "MAT0111", "2026102")
    make_fusion(db_session, master, member)

    response = client.post(
        f"/api/rooms/{room.id}/allocate",
        json={"school_class_id": member.id},
        headers={"X-Forwarded-User": "ana"},
    )

    assert response.status_code == 200
    assert response.json()["room_id"] == room.id
    assert _room_id(db_session, master.id) == room.id
    audit = db_session.execute(select(ActivityLog).where(ActivityLog.action == "rooms.allocate")).scalar_one()
    assert audit.actor == "ana"
    assert audit.details["school_class_ids"] == [master.id, member.id]

    response = client.post(f"/api/rooms/dissociate/{master.id}")
    assert response.json()["room_id"] is None
    assert _room_id(db_session, member.id) is None


def test_manual_allocation_unknown_ids(client, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101")
    section = make_section(db_session, term)

    assert client.post("/api/rooms/999/allocate", json={"school_class_id": section.id}).status_code == 404
    assert client.post(f"/api/rooms/{room.id}/allocate", json={"school_class_id": 999}).status_code == 404
    assert client.post("/api/rooms/dissociate/999").status_code == 404


def test_vacancy_report(client, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101", seat_count=50)
    make_section(db_session, term, capacity=35, room=room)

    rows = client.get("/api/rooms/vacancy").json()

    assert rows == [
        {
            "discipline_label": "MAT0111",
            "section_suffix": "01",
            "room": "B101",
            "seat_count": 50,
            "enrollment": 35,
            "spare_seats": 15,
            "is_first_year_mandatory": False,
        }
    ]


def test_first_semester_carry_over(client, db_session):
    previous = make_term(db_session, year=2025)
    current = make_term(db_session, year=2026)
    room = make_room(db_session, "B101")
    make_section(db_session, previous, section_code="2025101", room=room)
    section = make_section(db_session, current, section_code="2026101", courses=(("45052", 1),))

    preview = client.post("/api/rooms/allocate-first-semesters", json={"dry_run": True})
    assert preview.json()["allocated"] == 1
    assert _room_id(db_session, section.id) is None

    applied = client.post("/api/rooms/allocate-first-semesters", json={})
    assert applied.status_code == 200
    assert applied.json()["actions"] == ["ALLOCATED MAT0111 (T.2026101) -> B101"]
    assert _room_id(db_session, section.id) == room.id


def test_first_semester_without_previous_term(client, db_session):
    make_term(db_session, year=2026)

    response = client.post("/api/rooms/allocate-first-semesters", json={})

    assert response.status_code == 400
    assert response.json()["details"]["year"] == 2025
