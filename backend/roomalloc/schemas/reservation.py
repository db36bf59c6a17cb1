from datetime import datetime

from pydantic import BaseModel, Field

from roomalloc.models.reservation import ReservationBackendKind, ReservationJobStatus


class ReservationJobCreate(BaseModel):
    room_ids: list[int] = Field(min_length=1)


class ReservationJobOut(BaseModel):
    id: int
    room_ids: list[int]
    status: ReservationJobStatus
    backend: ReservationBackendKind
    progress: int
    data: dict
    error: str | None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    model_config = {"from_attributes": True}


class CircuitBreakerMetrics(BaseModel):
    enabled: bool
    state: str
    failure_count: int
    failure_threshold: int
    timeout_seconds: int
    last_failure_at: float | None
    next_retry_at: float | None
    can_execute: bool


class ReservationHealthOut(BaseModel):
    backend: ReservationBackendKind
    healthy: bool
    circuit_breaker: CircuitBreakerMetrics
