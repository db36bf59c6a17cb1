from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from roomalloc.models.reservation import ReservationJob, ReservationJobStatus
from roomalloc.services.audit import log_activity

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 1000


class JobProgressReporter:
    """Persists status, progress and structured data of one reservation job.

    Progress only moves forward and stays within 0..100; a lower value is
    ignored. A failed job is told apart by its status, not by its progress.
    """

    def __init__(self, db: Session, job: ReservationJob, actor: str | None = None) -> None:
        self.db = db
        self.job = job
        self.actor = actor
        self.history: list[int] = []

    @property
    def progress(self) -> int:
        return self.job.progress

    def start(self) -> None:
        self.job.status = ReservationJobStatus.running
        self.job.started_at = datetime.now(timezone.utc)
        self.job.progress = 0
        self.history.append(0)
        log_activity(
            self.db,
            actor=self.actor,
            action="reservation_job.start",
            entity_type="reservation_job",
            entity_id=self.job.id,
            details={"room_ids": list(self.job.room_ids), "backend": self.job.backend.value},
        )
        self.db.commit()

    def report(self, progress: int) -> None:
        value = max(0, min(int(progress), 100))
        if value <= self.job.progress:
            return
        self.job.progress = value
        self.history.append(value)
        self.db.commit()

    def update_data(self, **values) -> None:
        self.job.data = {**(self.job.data or {}), **values}
        self.db.commit()

    def complete(self, **values) -> None:
        self.job.status = ReservationJobStatus.completed
        if self.job.progress < 100:
            self.job.progress = 100
            self.history.append(100)
        self.job.finished_at = datetime.now(timezone.utc)
        self.job.data = {**(self.job.data or {}), "status": "completed", **values}
        log_activity(
            self.db,
            actor=self.actor,
            action="reservation_job.complete",
            entity_type="reservation_job",
            entity_id=self.job.id,
            details=values,
        )
        self.db.commit()

    def fail(self, error: Exception, **values) -> None:
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        # The session may hold a half-finished transaction from the failing step.
        self.db.rollback()
        self.job.status = ReservationJobStatus.failed
        self.job.error = message[:ERROR_MAX_LENGTH]
        self.job.finished_at = datetime.now(timezone.utc)
        self.job.data = {
            **(self.job.data or {}),
            "status": "failed",
            "error": message,
            "error_type": error.__class__.__name__,
            **values,
        }
        log_activity(
            self.db,
            actor=self.actor,
            action="reservation_job.fail",
            entity_type="reservation_job",
            entity_id=self.job.id,
            details={"error": message, **values},
        )
        self.db.commit()
        logger.error("RESERVATION JOB FAILED | job_id=%s | error=%s", self.job.id, message)
