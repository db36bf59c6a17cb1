from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from roomalloc.core.exceptions import (
    ReservationConflictError,
    ReservationCreationError,
    ReservationJobTimeoutError,
)
from roomalloc.models.reservation import Reservation, ReservationStatus
from roomalloc.models.school_class import ClassSchedule, Fusion, SchoolClass
from roomalloc.services.job_reporter import JobProgressReporter
from roomalloc.services.reservation_backends import (
    ReservationBackend,
    ReservationRef,
    operational_schedules,
)
from roomalloc.services.terms import TermProvider

logger = logging.getLogger(__name__)

PHASE_AVAILABILITY = "availability_check"
PHASE_CREATION = "reservation_creation"


@dataclass
class TrackedReservation:
    ref: ReservationRef
    room_id: int | None
    mirror_id: int | None = None


@dataclass
class SyncResult:
    term_id: int
    section_ids: list[int] = field(default_factory=list)
    skipped_section_ids: list[int] = field(default_factory=list)
    created_count: int = 0

    def as_dict(self) -> dict:
        return {
            "term_id": self.term_id,
            "section_ids": self.section_ids,
            "skipped_section_ids": self.skipped_section_ids,
            "created_count": self.created_count,
        }


def progress_percent(completed_steps: int, total_steps: int) -> int:
    if total_steps <= 0:
        return 0
    return completed_steps * 100 // total_steps


class ReservationSynchronizer:
    """Two-phase reservation run over the sections assigned to a set of rooms.

    Phase 1 only reads: the first slot that conflicts with an existing booking
    aborts the run. Phase 2 creates one reservation per operational slot that
    has no mirror row yet and mirrors each one locally. Mirror rows left behind
    by an earlier run, including bookings whose rollback failed, count as
    booked; a section that still needs slots adopts them so a failure cancels
    them along with the new ones. Any failure rolls back everything this run
    holds, section first and then the whole job, before the error is re-raised.
    """

    def __init__(
        self,
        db: Session,
        term_provider: TermProvider,
        backend: ReservationBackend,
        reporter: JobProgressReporter,
        *,
        timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.term_provider = term_provider
        self.backend = backend
        self.reporter = reporter
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._started_at: float | None = None
        self.created: dict[int, list[TrackedReservation]] = {}
        self.rollback_failures: list[dict] = []

    @property
    def job_id(self) -> int | None:
        return self.reporter.job.id

    def load_sections(self, term_id: int, room_ids: Iterable[int]) -> list[SchoolClass]:
        sections = self.db.execute(
            select(SchoolClass)
            .where(
                SchoolClass.school_term_id == term_id,
                SchoolClass.room_id.in_(sorted(set(room_ids))),
                SchoolClass.is_external.is_(False),
            )
            .options(
                selectinload(SchoolClass.schedules),
                selectinload(SchoolClass.room),
                selectinload(SchoolClass.term),
                selectinload(SchoolClass.fusion).selectinload(Fusion.members),
            )
            .order_by(SchoolClass.id)
        ).scalars()
        # A fusion is booked once, through its master.
        return [section for section in sections if not section.is_fusion_member]

    def _mirrored(self, section_ids: list[int]) -> dict[int, list[Reservation]]:
        if not section_ids:
            return {}
        rows = self.db.execute(
            select(Reservation)
            .where(
                Reservation.school_class_id.in_(section_ids),
                Reservation.backend == self.backend.kind,
                Reservation.status.in_([ReservationStatus.active, ReservationStatus.rollback_failed]),
            )
            .order_by(Reservation.id)
        ).scalars()
        mirrored: dict[int, list[Reservation]] = {}
        for row in rows:
            mirrored.setdefault(row.school_class_id, []).append(row)
        return mirrored

    def _check_deadline(self) -> None:
        if self._started_at is None:
            return
        if self._clock() - self._started_at > self.timeout_seconds:
            raise ReservationJobTimeoutError(self.timeout_seconds)

    def run(self, room_ids: Iterable[int]) -> SyncResult:
        room_ids = list(room_ids)
        term = self.term_provider.get()
        self._started_at = self._clock()
        sections = self.load_sections(term.id, room_ids)
        result = SyncResult(term_id=term.id, section_ids=[section.id for section in sections])
        mirrored = self._mirrored(result.section_ids)
        pending: dict[int, list[ClassSchedule]] = {}
        for section in sections:
            booked = {row.class_schedule_id for row in mirrored.get(section.id, [])}
            pending[section.id] = [
                schedule for schedule in operational_schedules(section) if schedule.id not in booked
            ]
        skipped = {
            section_id
            for section_id, rows in mirrored.items()
            if not pending[section_id] and all(row.status is ReservationStatus.active for row in rows)
        }
        result.skipped_section_ids = sorted(skipped)
        total_steps = 2 * len(sections)
        completed = 0

        logger.info(
            "RESERVATION SYNC START | job_id=%s | term_id=%s | rooms=%s | sections=%s | skipped=%s | backend=%s",
            self.job_id,
            term.id,
            room_ids,
            len(sections),
            len(skipped),
            self.backend.kind.value,
        )
        self.reporter.update_data(
            phase=PHASE_AVAILABILITY,
            term_id=term.id,
            total_sections=len(sections),
            skipped_section_ids=result.skipped_section_ids,
        )

        try:
            for section in sections:
                self._check_deadline()
                if section.id not in skipped:
                    self._check_section(section, pending[section.id])
                completed += 1
                self.reporter.report(progress_percent(completed, total_steps))

            self.reporter.update_data(phase=PHASE_CREATION)
            for section in sections:
                self._check_deadline()
                if section.id not in skipped:
                    self._adopt(section, mirrored.get(section.id, []))
                    result.created_count += self._create_for(section, pending[section.id])
                completed += 1
                self.reporter.report(progress_percent(completed, total_steps))
        except Exception as exc:
            logger.error(
                "RESERVATION SYNC ABORTED | job_id=%s | error=%s | sections_with_reservations=%s",
                self.job_id,
                exc,
                len(self.created),
            )
            self.db.rollback()
            self.rollback_all()
            raise

        logger.info(
            "RESERVATION SYNC COMPLETE | job_id=%s | term_id=%s | created=%s",
            self.job_id,
            term.id,
            result.created_count,
        )
        return result

    def _check_section(self, section: SchoolClass, schedules: list[ClassSchedule]) -> None:
        conflict = self.backend.find_conflicting_slot(section, schedules)
        if conflict is None:
            return
        room_name = section.room.name if section.room is not None else None
        logger.warning(
            "RESERVATION SYNC CONFLICT | job_id=%s | school_class_id=%s | room=%s | slot=%s",
            self.job_id,
            section.id,
            room_name,
            conflict,
        )
        raise ReservationConflictError(section_id=section.id, room_name=room_name, slot=conflict)

    def _adopt(self, section: SchoolClass, rows: list[Reservation]) -> None:
        if not rows:
            return
        tracked = self.created.setdefault(section.id, [])
        for row in rows:
            ref = ReservationRef(
                external_id=row.external_id,
                class_schedule_id=row.class_schedule_id,
                recurrent=row.recurrent,
            )
            tracked.append(TrackedReservation(ref=ref, room_id=row.room_id, mirror_id=row.id))
            if row.status is ReservationStatus.rollback_failed:
                logger.warning(
                    "RESERVATION ADOPTED | job_id=%s | school_class_id=%s | external_id=%s",
                    self.job_id,
                    section.id,
                    row.external_id,
                )
            row.status = ReservationStatus.active
            row.job_id = self.job_id
        self.db.commit()

    def _create_for(self, section: SchoolClass, schedules: list[ClassSchedule]) -> int:
        try:
            refs = self.backend.create_reservations(section, schedules)
        except ReservationCreationError as exc:
            self._track(section, exc.created)
            self.rollback_section(section.id)
            raise
        self._track(section, refs)
        return len(refs)

    def _track(self, section: SchoolClass, refs: list[ReservationRef]) -> None:
        if not refs:
            return
        items = [TrackedReservation(ref=ref, room_id=section.room_id) for ref in refs]
        # Remote bookings are tracked before any mirror write so a database failure still cancels them.
        self.created.setdefault(section.id, []).extend(items)
        for item in items:
            item.mirror_id = self._write_mirror(section.id, item, ReservationStatus.active).id
        self.db.commit()

    def _write_mirror(self, section_id: int, item: TrackedReservation, status: ReservationStatus) -> Reservation:
        mirror = Reservation(
            school_class_id=section_id,
            class_schedule_id=item.ref.class_schedule_id,
            room_id=item.room_id,
            backend=self.backend.kind,
            external_id=item.ref.external_id,
            recurrent=item.ref.recurrent,
            status=status,
            job_id=self.job_id,
        )
        self.db.add(mirror)
        self.db.flush()
        return mirror

    def _mark_rollback_failed(self, section_id: int, item: TrackedReservation) -> None:
        mirror = self.db.get(Reservation, item.mirror_id) if item.mirror_id is not None else None
        if mirror is None:
            self._write_mirror(section_id, item, ReservationStatus.rollback_failed)
        else:
            mirror.status = ReservationStatus.rollback_failed
        self.db.commit()

    def rollback_section(self, section_id: int) -> None:
        """Cancel every reservation this run holds for one section.

        A failed cancellation is logged and recorded; the sweep carries on and the
        mirror row is kept as ``rollback_failed`` so the leftover booking can be
        found, and adopted by the next run.
        """
        tracked = self.created.pop(section_id, [])
        if not tracked:
            return
        logger.info(
            "RESERVATION ROLLBACK START | job_id=%s | school_class_id=%s | reservations=%s",
            self.job_id,
            section_id,
            len(tracked),
        )
        for item in tracked:
            try:
                self.backend.cancel_reservation(item.ref)
            except Exception as exc:
                self.rollback_failures.append(
                    {"school_class_id": section_id, "external_id": item.ref.external_id, "error": str(exc)}
                )
                logger.exception(
                    "RESERVATION ROLLBACK FAILED | job_id=%s | school_class_id=%s | external_id=%s",
                    self.job_id,
                    section_id,
                    item.ref.external_id,
                )
                self._mark_rollback_failed(section_id, item)
                continue
            if item.mirror_id is not None:
                mirror = self.db.get(Reservation, item.mirror_id)
                if mirror is not None:
                    self.db.delete(mirror)
                    self.db.commit()
        logger.info(
            "RESERVATION ROLLBACK COMPLETE | job_id=%s | school_class_id=%s | failures=%s",
            self.job_id,
            section_id,
            sum(1 for failure in self.rollback_failures if failure["school_class_id"] == section_id),
        )

    def rollback_all(self) -> None:
        if not self.created:
            return
        logger.info(
            "RESERVATION JOB ROLLBACK START | job_id=%s | sections=%s | reservations=%s",
            self.job_id,
            len(self.created),
            sum(len(items) for items in self.created.values()),
        )
        for section_id in list(self.created):
            self.rollback_section(section_id)
