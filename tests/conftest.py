import pytest
import os
from datetime import date
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from ipcr_portal.database import Base, get_db
from ipcr_portal.main import app
from ipcr_portal.core.limiter import limiter
from ipcr_portal.core.permissions import Actor
from ipcr_portal.models import Division, RatingCycle, Role, User
from ipcr_portal.routers.auth_deps import get_blob_store
from ipcr_portal.services.storage import LocalBlobStore
from fastapi.testclient import TestClient

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def engine():
    """
    A fresh in-memory database per test. Service actions commit and roll
    back on their own, so tests cannot share an outer transaction.
    """
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory for users with a given role and division."""
    counter = {"n": 0}

    def _make_user(role=Role.EMPLOYEE, division=None, full_name=None, is_active=True):
        counter["n"] += 1
        user = User(
            email=f"{role.value.lower()}{counter['n']}@office.gov",
            full_name=full_name or f"{role.value} {counter['n']}",
            role=role,
            division_id=division.id if division else None,
            is_active=is_active
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture(scope="function")
def division(db_session):
    division = Division(name="Administrative Division", code="ADM")
    db_session.add(division)
    db_session.commit()
    return division


@pytest.fixture(scope="function")
def other_division(db_session):
    division = Division(name="Technical Division", code="TEC")
    db_session.add(division)
    db_session.commit()
    return division


@pytest.fixture(scope="function")
def employee(make_user, division):
    return make_user(Role.EMPLOYEE, division, full_name="Juan Dela Cruz")


@pytest.fixture(scope="function")
def coworker(make_user, division):
    return make_user(Role.EMPLOYEE, division, full_name="Maria Santos")


@pytest.fixture(scope="function")
def chief(make_user, division):
    return make_user(Role.DIVISION_CHIEF, division, full_name="Chief Admin")


@pytest.fixture(scope="function")
def other_chief(make_user, other_division):
    return make_user(Role.DIVISION_CHIEF, other_division, full_name="Chief Technical")


@pytest.fixture(scope="function")
def hr_manager(make_user):
    return make_user(Role.HR_MANAGER, full_name="HR Manager")


@pytest.fixture(scope="function")
def actor_of():
    return Actor.from_user


@pytest.fixture(scope="function")
def active_cycle(db_session):
    cycle = RatingCycle(
        name="January - June 2025",
        period_start=date(2025, 1, 1),
        period_end=date(2025, 6, 30),
        is_active=True
    )
    db_session.add(cycle)
    db_session.commit()
    return cycle


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    return LocalBlobStore(root=str(tmp_path / "blobs"), secret_key="test-secret", allow_admin_delete=True)


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens for a user."""
    from ipcr_portal.services.auth import create_access_token

    def _get_token(user, **claims):
        return create_access_token(data={"sub": user.email, "type": "access", **claims})
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _auth_headers(user):
        return {"Authorization": f"Bearer {get_token(user)}"}
    return _auth_headers


@pytest.fixture(scope="function")
def client(db_session, blob_store):
    """TestClient bound to the test session and a temporary blob store."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
