import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saaslens import models  # noqa: F401  (registers tables)
from saaslens.database import Base, get_db
from saaslens.main import app
from saaslens.security import require_api_auth
from saaslens.services.rate_limit import InMemoryRateLimiter, get_rate_limiter

USER = "user-1"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def client(session_factory, limiter):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[require_api_auth] = lambda: None
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    # No context manager: the lifespan would create the on-disk default database.
    yield TestClient(app, headers={"X-User-Id": USER})
    app.dependency_overrides.clear()
