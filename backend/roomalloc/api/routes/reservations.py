import logging
from collections.abc import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from roomalloc.api.deps import get_actor, get_app_settings, get_backend_factory, get_db, get_session_factory
from roomalloc.core.config import Settings
from roomalloc.models.reservation import ReservationJob, ReservationJobStatus
from roomalloc.models.room import Room
from roomalloc.schemas.reservation import ReservationHealthOut, ReservationJobCreate, ReservationJobOut
from roomalloc.services.circuit_breaker import get_circuit_breaker
from roomalloc.services.reservation_jobs import run_reservation_job, selected_backend_kind, submit_reservation_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/jobs", response_model=ReservationJobOut, status_code=status.HTTP_202_ACCEPTED)
def create_reservation_job(
    payload: ReservationJobCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    backend_factory=Depends(get_backend_factory),
    actor: str | None = Depends(get_actor),
) -> ReservationJobOut:
    room_ids = sorted(set(payload.room_ids))
    found = set(db.execute(select(Room.id).where(Room.id.in_(room_ids))).scalars())
    missing = [room_id for room_id in room_ids if room_id not in found]
    if missing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Room not found: {missing}")

    job, claim_id = submit_reservation_job(db, room_ids, settings=settings, actor=actor)
    background_tasks.add_task(
        run_reservation_job,
        job.id,
        claim_id,
        session_factory=session_factory,
        settings=settings,
        backend_factory=backend_factory,
        actor=actor,
    )
    return job


@router.get("/jobs", response_model=list[ReservationJobOut])
def list_reservation_jobs(
    job_status: ReservationJobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[ReservationJobOut]:
    query = select(ReservationJob)
    if job_status is not None:
        query = query.where(ReservationJob.status == job_status)
    return list(db.execute(query.order_by(ReservationJob.id.desc()).limit(limit)).scalars())


@router.get("/jobs/{job_id}", response_model=ReservationJobOut)
def get_reservation_job(job_id: int, db: Session = Depends(get_db)) -> ReservationJobOut:
    job = db.get(ReservationJob, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation job not found")
    return job


@router.get("/health", response_model=ReservationHealthOut)
def reservation_health(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    backend_factory=Depends(get_backend_factory),
) -> ReservationHealthOut:
    backend = backend_factory(db, settings)
    return ReservationHealthOut(
        backend=selected_backend_kind(settings),
        healthy=backend.health_check(),
        circuit_breaker=get_circuit_breaker().metrics(),
    )


@router.post("/circuit-breaker/reset")
def reset_circuit_breaker(actor: str | None = Depends(get_actor)) -> dict:
    breaker = get_circuit_breaker()
    breaker.force_reset()
    logger.warning("CIRCUIT BREAKER MANUAL RESET | actor=%s", actor)
    return {"success": True, "circuit_breaker": breaker.metrics()}
