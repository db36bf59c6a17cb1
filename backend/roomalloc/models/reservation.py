from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from roomalloc.db.base import Base
from roomalloc.models.school_class import Weekday


class ReservationBackendKind(str, Enum):
    api = "api"
    legacy = "legacy"


class ReservationStatus(str, Enum):
    active = "active"
    rollback_failed = "rollback_failed"


class ReservationJobStatus(str, Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class Reservation(Base):
    """Local mirror of a reservation created by the synchronizer, kept for rollback bookkeeping."""

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_class_id: Mapped[int] = mapped_column(
        ForeignKey("school_classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("class_schedules.id", ondelete="SET NULL"), nullable=True
    )
    room_id: Mapped[int | None] = mapped_column(ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True)
    backend: Mapped[ReservationBackendKind] = mapped_column(
        SAEnum(ReservationBackendKind, name="reservation_backend"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recurrent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[ReservationStatus] = mapped_column(
        SAEnum(ReservationStatus, name="reservation_status"), nullable=False, default=ReservationStatus.active
    )
    job_id: Mapped[int | None] = mapped_column(ForeignKey("reservation_jobs.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class LegacyReservation(Base):
    """Direct-write reservation store used when the remote API is disabled."""

    __tablename__ = "legacy_reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    school_class_id: Mapped[int | None] = mapped_column(
        ForeignKey("school_classes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    day_of_week: Mapped[Weekday] = mapped_column(SAEnum(Weekday, name="weekday"), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    starts_on: Mapped[date] = mapped_column(Date, nullable=False)
    ends_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ReservationJob(Base):
    __tablename__ = "reservation_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ReservationJobStatus] = mapped_column(
        SAEnum(ReservationJobStatus, name="reservation_job_status"),
        nullable=False,
        default=ReservationJobStatus.queued,
        index=True,
    )
    backend: Mapped[ReservationBackendKind] = mapped_column(
        SAEnum(ReservationBackendKind, name="reservation_backend"), nullable=False
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
