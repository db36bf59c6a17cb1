from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from roomalloc.api.deps import get_app_settings, get_db
from roomalloc.core.config import Settings
from roomalloc.models.term import SchoolTerm
from roomalloc.schemas.school_class import CourseGridOut
from roomalloc.schemas.term import SchoolTermCreate, SchoolTermOut, SchoolTermUpdate
from roomalloc.services.course_schedule import build_course_grid
from roomalloc.services.terms import CurrentTermProvider

router = APIRouter()


@router.get("/", response_model=list[SchoolTermOut])
def list_terms(db: Session = Depends(get_db)) -> list[SchoolTermOut]:
    terms = list(db.execute(select(SchoolTerm)).scalars())
    return sorted(terms, key=lambda term: term.sort_key, reverse=True)


@router.post("/", response_model=SchoolTermOut, status_code=status.HTTP_201_CREATED)
def create_term(payload: SchoolTermCreate, db: Session = Depends(get_db)) -> SchoolTermOut:
    existing = db.execute(
        select(SchoolTerm).where(SchoolTerm.year == payload.year, SchoolTerm.period == payload.period)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="School term already exists")
    term = SchoolTerm(**payload.model_dump())
    db.add(term)
    db.commit()
    db.refresh(term)
    return term


@router.get("/latest", response_model=SchoolTermOut)
def latest_term(db: Session = Depends(get_db)) -> SchoolTermOut:
    return CurrentTermProvider(db).get()


@router.put("/{term_id}", response_model=SchoolTermOut)
def update_term(term_id: int, payload: SchoolTermUpdate, db: Session = Depends(get_db)) -> SchoolTermOut:
    term = db.get(SchoolTerm, term_id)
    if term is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School term not found")
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(term, key, value)
    db.commit()
    db.refresh(term)
    return term


@router.get("/latest/courses/{course_code}/grid", response_model=CourseGridOut)
def latest_course_grid(
    course_code: str,
    semester: int = Query(ge=1, le=20),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> CourseGridOut:
    term = CurrentTermProvider(db).get()
    grid = build_course_grid(
        db,
        term_id=term.id,
        course_code=course_code,
        semester=semester,
        rules=settings.course_schedule_rules,
    )
    return {
        "course_code": grid.course_code,
        "semester": grid.semester,
        "days": grid.days,
        "time_ranges": grid.time_ranges,
        "sections": grid.sections,
    }
