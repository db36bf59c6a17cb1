from __future__ import annotations

from itertools import count
import logging
from threading import Lock
from time import perf_counter
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from roomalloc.core.config import Settings
from roomalloc.core.exceptions import JobAlreadyRunningError
from roomalloc.models.reservation import ReservationBackendKind, ReservationJob, ReservationJobStatus
from roomalloc.services.audit import log_activity
from roomalloc.services.job_reporter import JobProgressReporter
from roomalloc.services.reservation_backends import ReservationBackend, build_reservation_backend
from roomalloc.services.reservation_sync import ReservationSynchronizer
from roomalloc.services.terms import CurrentTermProvider

logger = logging.getLogger(__name__)

BackendFactory = Callable[[Session, Settings], ReservationBackend]
SessionFactory = Callable[[], Session]


class JobRegistry:
    """In-flight reservation jobs keyed by room set.

    A claim is refused while any running claim shares a room with it, so two
    jobs never touch the same room at once. Claims are released when the job
    finishes, whatever its outcome.
    """

    def __init__(self) -> None:
        self._claims: dict[int, frozenset[int]] = {}
        self._job_ids: dict[int, int] = {}
        self._ids = count(1)
        self._lock = Lock()

    def claim(self, room_ids: Iterable[int]) -> int:
        rooms = frozenset(room_ids)
        with self._lock:
            for claim_id, claimed in self._claims.items():
                if claimed & rooms:
                    raise JobAlreadyRunningError(rooms, self._job_ids.get(claim_id))
            claim_id = next(self._ids)
            self._claims[claim_id] = rooms
            return claim_id

    def bind(self, claim_id: int, job_id: int) -> None:
        with self._lock:
            if claim_id in self._claims:
                self._job_ids[claim_id] = job_id

    def release(self, claim_id: int) -> None:
        with self._lock:
            self._claims.pop(claim_id, None)
            self._job_ids.pop(claim_id, None)

    def running_room_ids(self) -> set[int]:
        with self._lock:
            rooms: set[int] = set()
            for claimed in self._claims.values():
                rooms |= claimed
            return rooms

    def clear(self) -> None:
        with self._lock:
            self._claims.clear()
            self._job_ids.clear()


_registry = JobRegistry()


def get_job_registry() -> JobRegistry:
    return _registry


def selected_backend_kind(settings: Settings) -> ReservationBackendKind:
    return ReservationBackendKind.api if settings.salas_use_api else ReservationBackendKind.legacy


def submit_reservation_job(
    db: Session,
    room_ids: Iterable[int],
    *,
    settings: Settings,
    actor: str | None = None,
    registry: JobRegistry | None = None,
) -> tuple[ReservationJob, int]:
    """Create a queued job for ``room_ids``; returns the job and its registry claim."""
    registry = registry or get_job_registry()
    rooms = sorted(set(room_ids))
    claim_id = registry.claim(rooms)
    try:
        job = ReservationJob(
            room_ids=rooms,
            status=ReservationJobStatus.queued,
            backend=selected_backend_kind(settings),
            progress=0,
            data={},
        )
        db.add(job)
        db.flush()
        log_activity(
            db,
            actor=actor,
            action="reservation_job.submit",
            entity_type="reservation_job",
            entity_id=job.id,
            details={"room_ids": rooms, "backend": job.backend.value},
        )
        db.commit()
        db.refresh(job)
    except Exception:
        db.rollback()
        registry.release(claim_id)
        raise
    registry.bind(claim_id, job.id)
    logger.info(
        "RESERVATION JOB QUEUED | job_id=%s | rooms=%s | backend=%s | actor=%s",
        job.id,
        rooms,
        job.backend.value,
        actor,
    )
    return job, claim_id


def run_reservation_job(
    job_id: int,
    claim_id: int,
    *,
    session_factory: SessionFactory,
    settings: Settings,
    backend_factory: BackendFactory = build_reservation_backend,
    registry: JobRegistry | None = None,
    actor: str | None = None,
) -> None:
    """Background entry point. The outcome is written to the job row; nothing is raised to the caller."""
    registry = registry or get_job_registry()
    started = perf_counter()
    db = session_factory()
    try:
        job = db.get(ReservationJob, job_id)
        if job is None:
            logger.error("RESERVATION JOB MISSING | job_id=%s", job_id)
            return
        reporter = JobProgressReporter(db, job, actor=actor)
        reporter.start()
        logger.info("RESERVATION JOB START | job_id=%s | rooms=%s", job.id, job.room_ids)

        synchronizer: ReservationSynchronizer | None = None
        try:
            backend = backend_factory(db, settings)
            synchronizer = ReservationSynchronizer(
                db,
                CurrentTermProvider(db),
                backend,
                reporter,
                timeout_seconds=settings.reservation_job_timeout_seconds,
            )
            result = synchronizer.run(job.room_ids)
        except Exception as exc:
            logger.exception(
                "RESERVATION JOB ERROR | job_id=%s | wall_ms=%s",
                job_id,
                int((perf_counter() - started) * 1000),
            )
            reporter.fail(
                exc,
                details=getattr(exc, "details", {}) or {},
                rollback_attempted=synchronizer is not None,
                rollback_failures=synchronizer.rollback_failures if synchronizer is not None else [],
            )
            return

        reporter.complete(**result.as_dict())
        logger.info(
            "RESERVATION JOB COMPLETE | job_id=%s | created=%s | skipped=%s | wall_ms=%s",
            job_id,
            result.created_count,
            len(result.skipped_section_ids),
            int((perf_counter() - started) * 1000),
        )
    finally:
        registry.release(claim_id)
        db.close()
