import os
from pathlib import Path
import tempfile

# The app's own engine is only used by the startup schema check and /health/ready.
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{Path(tempfile.gettempdir()) / 'roomalloc-tests.db'}"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from builders import FakeReservationBackend
from roomalloc.api.deps import get_backend_factory, get_db, get_session_factory
from roomalloc.db.base import Base
from roomalloc.main import app
import roomalloc.models  # noqa: F401
from roomalloc.services.circuit_breaker import clear_circuit_breaker
from roomalloc.services.rate_limit import clear_rate_limiter
from roomalloc.services.reservation_jobs import get_job_registry


@pytest.fixture(autouse=True)
def reset_process_state():
    clear_rate_limiter()
    clear_circuit_breaker()
    get_job_registry().clear()
    yield
    clear_rate_limiter()
    clear_circuit_breaker()
    get_job_registry().clear()


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def fake_backend():
    return FakeReservationBackend()


@pytest.fixture()
def client(session_factory, fake_backend):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_backend_factory] = lambda: (lambda db, settings: fake_backend)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
