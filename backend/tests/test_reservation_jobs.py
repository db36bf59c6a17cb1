import pytest
from sqlalchemy import select

from roomalloc.core.config import get_settings
from roomalloc.core.exceptions import JobAlreadyRunningError
from roomalloc.models.activity_log import ActivityLog
from roomalloc.models.reservation import ReservationBackendKind, ReservationJob, ReservationJobStatus
from roomalloc.services.job_reporter import ERROR_MAX_LENGTH, JobProgressReporter
from roomalloc.services.reservation_jobs import (
    JobRegistry,
    run_reservation_job,
    selected_backend_kind,
    submit_reservation_job,
)

from builders import FakeReservationBackend, make_job, make_room, make_section, make_term


def test_registry_refuses_overlapping_room_sets():
    registry = JobRegistry()
    claim_id = registry.claim([1, 2])
    registry.bind(claim_id, 10)

    with pytest.raises(JobAlreadyRunningError) as exc_info:
        registry.claim([2, 3])
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["running_job_id"] == 10

    other = registry.claim([3, 4])
    assert registry.running_room_ids() == {1, 2, 3, 4}

    registry.release(claim_id)
    registry.release(other)
    assert registry.running_room_ids() == set()
    registry.claim([2, 3])


def test_selected_backend_follows_feature_flag():
    settings = get_settings()
    assert selected_backend_kind(settings.model_copy(update={"salas_use_api": True})) is ReservationBackendKind.api
    assert selected_backend_kind(settings.model_copy(update={"salas_use_api": False})) is ReservationBackendKind.legacy


def test_submit_creates_queued_job_and_audit_row(db_session):
    registry = JobRegistry()
    room = make_room(db_session, "B101")

    job, claim_id = submit_reservation_job(
        db_session,
        [room.id, room.id],
        settings=get_settings(),
        actor="ana",
        registry=registry,
    )

    assert job.status is ReservationJobStatus.queued
    assert job.room_ids == [room.id]
    assert registry.running_room_ids() == {room.id}
    audit = db_session.execute(select(ActivityLog).where(ActivityLog.action == "reservation_job.submit")).scalar_one()
    assert audit.actor == "ana"
    assert audit.entity_id == str(job.id)

    with pytest.raises(JobAlreadyRunningError):
        submit_reservation_job(db_session, [room.id], settings=get_settings(), registry=registry)
    registry.release(claim_id)


def test_run_completes_job_and_releases_claim(session_factory, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101")
    make_section(db_session, term, room=room)
    registry = JobRegistry()
    job, claim_id = submit_reservation_job(db_session, [room.id], settings=get_settings(), registry=registry)
    backend = FakeReservationBackend()

    run_reservation_job(
        job.id,
        claim_id,
        session_factory=session_factory,
        settings=get_settings(),
        backend_factory=lambda db, settings: backend,
        registry=registry,
    )

    db_session.expire_all()
    stored = db_session.get(ReservationJob, job.id)
    assert stored.status is ReservationJobStatus.completed
    assert stored.progress == 100
    assert stored.data["created_count"] == 1
    assert stored.data["status"] == "completed"
    assert stored.finished_at is not None
    assert registry.running_room_ids() == set()


def test_run_records_failure_without_raising(session_factory, db_session):
    term = make_term(db_session)
    room = make_room(db_session, "B101")
    section = make_section(db_session, term, room=room)
    registry = JobRegistry()
    job, claim_id = submit_reservation_job(db_session, [room.id], settings=get_settings(), registry=registry)
    backend = FakeReservationBackend(conflicts={section.id})

    run_reservation_job(
        job.id,
        claim_id,
        session_factory=session_factory,
        settings=get_settings(),
        backend_factory=lambda db, settings: backend,
        registry=registry,
    )

    db_session.expire_all()
    stored = db_session.get(ReservationJob, job.id)
    assert stored.status is ReservationJobStatus.failed
    assert stored.progress < 100
    assert "Schedule conflict detected" in stored.error
    assert stored.data["error_type"] == "ReservationConflictError"
    assert stored.data["rollback_attempted"] is True
    assert stored.data["details"]["school_class_id"] == section.id
    assert registry.running_room_ids() == set()


def test_run_fails_when_no_term_exists(session_factory, db_session):
    room = make_room(db_session, "B101")
    registry = JobRegistry()
    job, claim_id = submit_reservation_job(db_session, [room.id], settings=get_settings(), registry=registry)

    run_reservation_job(
        job.id,
        claim_id,
        session_factory=session_factory,
        settings=get_settings(),
        backend_factory=lambda db, settings: FakeReservationBackend(),
        registry=registry,
    )

    db_session.expire_all()
    stored = db_session.get(ReservationJob, job.id)
    assert stored.status is ReservationJobStatus.failed
    assert stored.data["error_type"] == "ResourceNotFoundError"


def test_reporter_keeps_progress_monotonic_and_within_bounds(db_session):
    job = make_job(db_session, [1])
    reporter = JobProgressReporter(db_session, job)

    reporter.start()
    reporter.report(40)
    reporter.report(20)
    reporter.report(75)

    assert job.status is ReservationJobStatus.running
    assert job.progress == 75
    assert reporter.history == [0, 40, 75]

    reporter.complete(created_count=3)
    assert job.progress == 100
    assert reporter.history == [0, 40, 75, 100]
    assert job.data["created_count"] == 3


def test_reporter_emits_final_step_and_complete_does_not_repeat_it(db_session):
    job = make_job(db_session, [1])
    reporter = JobProgressReporter(db_session, job)

    reporter.start()
    reporter.report(50)
    reporter.report(150)

    assert job.progress == 100
    assert job.status is ReservationJobStatus.running

    reporter.complete()
    assert reporter.history == [0, 50, 100]
    assert job.status is ReservationJobStatus.completed


def test_reporter_truncates_long_errors(db_session):
    job = make_job(db_session, [1])
    reporter = JobProgressReporter(db_session, job)
    reporter.start()

    reporter.fail(RuntimeError("x" * (ERROR_MAX_LENGTH + 50)), rollback_attempted=False)

    assert job.status is ReservationJobStatus.failed
    assert len(job.error) == ERROR_MAX_LENGTH
    assert job.data["error_type"] == "RuntimeError"
    assert job.data["rollback_attempted"] is False
