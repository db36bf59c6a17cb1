from collections.abc import Callable, Generator

from fastapi import Header
from sqlalchemy.orm import Session

from roomalloc.core.config import Settings, get_settings
from roomalloc.db.session import SessionLocal
from roomalloc.services.reservation_backends import ReservationBackend, build_reservation_backend


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Session factory handed to background jobs, which outlive the request session."""
    return SessionLocal


def get_backend_factory() -> Callable[[Session, Settings], ReservationBackend]:
    return build_reservation_backend


def get_app_settings() -> Settings:
    return get_settings()


def get_actor(x_forwarded_user: str | None = Header(default=None)) -> str | None:
    # Authentication happens at the gateway; the forwarded identity is only recorded in audit rows.
    if x_forwarded_user is None:
        return None
    actor = x_forwarded_user.strip()
    return actor or None
