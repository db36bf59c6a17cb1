import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.api.deps import get_actor, get_app_settings, get_db
from roomalloc.core.config import Settings
from roomalloc.models.room import Room
from roomalloc.models.school_class import Fusion, SchoolClass
from roomalloc.schemas.room import (
    AllocateRoomRequest,
    AllocationResultOut,
    CompatibleRoomRequest,
    FirstSemesterAllocationOut,
    FirstSemesterAllocationRequest,
    RoomCreate,
    RoomOut,
    RoomUpdate,
    RoomVacancyRow,
)
from roomalloc.schemas.school_class import SchoolClassOut
from roomalloc.services.allocator import Allocator
from roomalloc.services.audit import log_activity
from roomalloc.services.compatibility import CompatibilityChecker
from roomalloc.services.first_semester import FirstSemesterCarryOver
from roomalloc.services.terms import CurrentTermProvider
from roomalloc.services.vacancy_report import build_vacancy_report

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _get_section(db: Session, school_class_id: int) -> SchoolClass:
    section = db.execute(
        select(SchoolClass)
        .where(SchoolClass.id == school_class_id)
        .options(selectinload(SchoolClass.fusion).selectinload(Fusion.members))
    ).scalar_one_or_none()
    if section is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    return section


@router.get("/", response_model=list[RoomOut])
def list_rooms(db: Session = Depends(get_db)) -> list[RoomOut]:
    return list(db.execute(select(Room).order_by(Room.name)).scalars())


@router.post("/", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
def create_room(payload: RoomCreate, db: Session = Depends(get_db)) -> RoomOut:
    existing = db.execute(select(Room).where(Room.name == payload.name)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")
    room = Room(**payload.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@router.put("/{room_id}", response_model=RoomOut)
def update_room(room_id: int, payload: RoomUpdate, db: Session = Depends(get_db)) -> RoomOut:
    room = _get_room(db, room_id)

    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        existing = db.execute(select(Room).where(Room.name == data["name"], Room.id != room_id)).scalar_one_or_none()
        if existing:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")

    for key, value in data.items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    return room


@router.delete("/{room_id}")
def delete_room(room_id: int, db: Session = Depends(get_db)) -> dict:
    room = _get_room(db, room_id)
    db.delete(room)
    db.commit()
    return {"success": True}


@router.post("/distribute", response_model=AllocationResultOut)
def distribute_rooms(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    actor: str | None = Depends(get_actor),
):
    result = Allocator(db, CurrentTermProvider(db), settings).allocate()
    log_activity(
        db,
        actor=actor,
        action="rooms.distribute",
        entity_type="school_term",
        entity_id=result.term_id,
        details={"assigned": result.assigned_count, "unassigned": len(result.unassigned_ids)},
    )
    db.commit()

    if "application/json" in request.headers.get("accept", ""):
        return result.as_dict()
    return RedirectResponse(url=f"{settings.api_prefix}/rooms/", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/compatible", response_model=list[SchoolClassOut])
def compatible_sections(
    payload: CompatibleRoomRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> list[SchoolClassOut]:
    """Unassigned sections of the latest term that fit in the room's free time.

    Capacity and room restrictions are ignored so the operator sees every
    section the room could physically host.
    """
    room = _get_room(db, payload.room_id)
    term = CurrentTermProvider(db).get()
    checker = CompatibilityChecker.for_term(db, term.id, settings.room_restrictions)
    sections = db.execute(
        select(SchoolClass)
        .where(
            SchoolClass.school_term_id == term.id,
            SchoolClass.room_id.is_(None),
            SchoolClass.is_external.is_(False),
        )
        .options(
            selectinload(SchoolClass.schedules),
            selectinload(SchoolClass.fusion).selectinload(Fusion.members),
        )
        .order_by(SchoolClass.discipline_code, SchoolClass.section_code)
    ).scalars()
    return [
        section
        for section in sections
        if not section.is_fusion_member
        and checker.is_compatible(room, section, ignore_block_constraint=True, ignore_capacity_constraint=True)
    ]


@router.post("/{room_id}/allocate", response_model=SchoolClassOut)
def allocate_room(
    room_id: int,
    payload: AllocateRoomRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
) -> SchoolClassOut:
    room = _get_room(db, room_id)
    section = _get_section(db, payload.school_class_id)
    # Manual assignment is unconditional; the operator owns any overlap it creates.
    members = section.allocation_members()
    for member in members:
        member.room_id = room.id
    log_activity(
        db,
        actor=actor,
        action="rooms.allocate",
        entity_type="school_class",
        entity_id=section.id,
        details={"room_id": room.id, "room": room.name, "school_class_ids": [member.id for member in members]},
    )
    db.commit()
    db.refresh(section)
    logger.info("MANUAL ALLOCATION | room=%s | school_class_id=%s | actor=%s", room.name, section.id, actor)
    return section


@router.post("/dissociate/{school_class_id}", response_model=SchoolClassOut)
def dissociate_room(
    school_class_id: int,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
) -> SchoolClassOut:
    section = _get_section(db, school_class_id)
    previous_room_id = section.room_id
    members = section.allocation_members()
    for member in members:
        member.room_id = None
    log_activity(
        db,
        actor=actor,
        action="rooms.dissociate",
        entity_type="school_class",
        entity_id=section.id,
        details={"previous_room_id": previous_room_id, "school_class_ids": [member.id for member in members]},
    )
    db.commit()
    db.refresh(section)
    return section


@router.get("/vacancy", response_model=list[RoomVacancyRow])
def room_vacancy(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> list[RoomVacancyRow]:
    term = CurrentTermProvider(db).get()
    return build_vacancy_report(db, term.id, settings.allocation_first_year_semesters)


@router.post("/allocate-first-semesters", response_model=FirstSemesterAllocationOut)
def allocate_first_semesters(
    payload: FirstSemesterAllocationRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
) -> dict:
    result = FirstSemesterCarryOver(db, CurrentTermProvider(db)).run(dry_run=payload.dry_run, force=payload.force)
    if not payload.dry_run:
        log_activity(
            db,
            actor=actor,
            action="rooms.allocate_first_semesters",
            entity_type="school_term",
            entity_id=result.current_term_id,
            details={"allocated": result.allocated, "moved": result.moved, "evicted": result.evicted},
        )
        db.commit()
    return result.as_dict()
