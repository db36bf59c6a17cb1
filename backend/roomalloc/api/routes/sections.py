from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.api.deps import get_db
from roomalloc.models.priority import Priority
from roomalloc.models.room import Room
from roomalloc.models.school_class import (
    ClassSchedule,
    CourseInformation,
    Fusion,
    Instructor,
    SchoolClass,
)
from roomalloc.models.term import SchoolTerm
from roomalloc.schemas.school_class import (
    CourseInformationIn,
    FusionCreate,
    FusionOut,
    InstructorIn,
    PriorityCreate,
    PriorityOut,
    SchoolClassCreate,
    SchoolClassOut,
)

router = APIRouter()


def _course_information(db: Session, payload: CourseInformationIn) -> CourseInformation:
    existing = db.execute(
        select(CourseInformation).where(
            CourseInformation.course_code == payload.course_code,
            CourseInformation.habilitation_code == payload.habilitation_code,
            CourseInformation.semester == payload.semester,
            CourseInformation.obligation == payload.obligation,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing
    record = CourseInformation(**payload.model_dump())
    db.add(record)
    db.flush()
    return record


def _instructor(db: Session, payload: InstructorIn) -> Instructor:
    if payload.code:
        existing = db.execute(select(Instructor).where(Instructor.code == payload.code)).scalar_one_or_none()
        if existing is not None:
            return existing
    record = Instructor(**payload.model_dump())
    db.add(record)
    db.flush()
    return record


def _fusion_out(fusion: Fusion) -> FusionOut:
    return FusionOut(id=fusion.id, master_id=fusion.master_id, member_ids=[member.id for member in fusion.members])


@router.get("/sections", response_model=list[SchoolClassOut])
def list_sections(
    school_term_id: int | None = Query(default=None),
    room_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[SchoolClassOut]:
    query = select(SchoolClass).options(
        selectinload(SchoolClass.schedules),
        selectinload(SchoolClass.course_informations),
        selectinload(SchoolClass.instructors),
    )
    if school_term_id is not None:
        query = query.where(SchoolClass.school_term_id == school_term_id)
    if room_id is not None:
        query = query.where(SchoolClass.room_id == room_id)
    return list(db.execute(query.order_by(SchoolClass.discipline_code, SchoolClass.section_code)).scalars())


@router.post("/sections", response_model=SchoolClassOut, status_code=status.HTTP_201_CREATED)
def create_section(payload: SchoolClassCreate, db: Session = Depends(get_db)) -> SchoolClassOut:
    if db.get(SchoolTerm, payload.school_term_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School term not found")
    existing = db.execute(
        select(SchoolClass).where(
            SchoolClass.school_term_id == payload.school_term_id,
            SchoolClass.discipline_code == payload.discipline_code,
            SchoolClass.section_code == payload.section_code,
        )
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Section already exists for this term")

    data = payload.model_dump(exclude={"schedules", "course_informations", "instructors"})
    section = SchoolClass(**data)
    section.schedules = [
        ClassSchedule(day_of_week=slot.day, start_time=slot.start_time, end_time=slot.end_time)
        for slot in payload.schedules
    ]
    section.course_informations = [_course_information(db, item) for item in payload.course_informations]
    section.instructors = [_instructor(db, item) for item in payload.instructors]
    db.add(section)
    db.commit()
    db.refresh(section)
    return section


@router.get("/sections/{school_class_id}", response_model=SchoolClassOut)
def get_section(school_class_id: int, db: Session = Depends(get_db)) -> SchoolClassOut:
    section = db.get(SchoolClass, school_class_id)
    if section is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    return section


@router.delete("/sections/{school_class_id}")
def delete_section(school_class_id: int, db: Session = Depends(get_db)) -> dict:
    section = db.get(SchoolClass, school_class_id)
    if section is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    if section.fusion_id is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Remove the section from its fusion first")
    db.delete(section)
    db.commit()
    return {"success": True}


@router.post("/fusions", response_model=FusionOut, status_code=status.HTTP_201_CREATED)
def create_fusion(payload: FusionCreate, db: Session = Depends(get_db)) -> FusionOut:
    sections = list(
        db.execute(select(SchoolClass).where(SchoolClass.id.in_(payload.school_class_ids))).scalars()
    )
    if len(sections) != len(payload.school_class_ids):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    if len({section.school_term_id for section in sections}) != 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Fused sections must belong to the same term",
        )
    if any(section.fusion_id is not None for section in sections):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Section already belongs to a fusion")

    fusion = Fusion(master_id=payload.master_id)
    db.add(fusion)
    db.flush()
    master = next(section for section in sections if section.id == payload.master_id)
    for section in sections:
        section.fusion_id = fusion.id
        # Members share the master's room from the moment they are fused.
        section.room_id = master.room_id
    db.commit()
    db.refresh(fusion)
    return _fusion_out(fusion)


@router.delete("/fusions/{fusion_id}")
def delete_fusion(fusion_id: int, db: Session = Depends(get_db)) -> dict:
    fusion = db.get(Fusion, fusion_id)
    if fusion is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fusion not found")
    for member in list(fusion.members):
        member.fusion_id = None
    db.flush()
    db.delete(fusion)
    db.commit()
    return {"success": True}


@router.get("/priorities", response_model=list[PriorityOut])
def list_priorities(
    school_class_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[PriorityOut]:
    query = select(Priority)
    if school_class_id is not None:
        query = query.where(Priority.school_class_id == school_class_id)
    return list(db.execute(query.order_by(Priority.school_class_id, Priority.priority.desc(), Priority.id)).scalars())


@router.post("/priorities", response_model=PriorityOut, status_code=status.HTTP_201_CREATED)
def upsert_priority(payload: PriorityCreate, db: Session = Depends(get_db)) -> PriorityOut:
    if db.get(SchoolClass, payload.school_class_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    if db.get(Room, payload.room_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    record = db.execute(
        select(Priority).where(
            Priority.school_class_id == payload.school_class_id,
            Priority.room_id == payload.room_id,
        )
    ).scalar_one_or_none()
    if record is None:
        record = Priority(**payload.model_dump())
        db.add(record)
    else:
        record.priority = payload.priority
    db.commit()
    db.refresh(record)
    return record
