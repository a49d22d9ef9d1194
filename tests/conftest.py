from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from office_access.core.auth import AuthUtils
from office_access.core.clock import utcnow
from office_access.core.database import Base, build_engine, build_session_factory, get_db
from office_access.main import app
from office_access.models.passcode import PasscodeStatus, PasscodeType
from office_access.models.user import User, UserStatus, UserType
from office_access.repositories.passcode import PasscodeRepository


@pytest.fixture
def engine():
    # One shared in-memory connection so the app's threadpool sees the same tables.
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager: startup hooks (table creation on the
    # configured database, maintenance loop) stay off in tests.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make_user(name="Alice", user_type=UserType.EMPLOYEE, status=UserStatus.ACTIVE, **extra):
        user = User(name=name, user_type=user_type, status=status, **extra)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_passcode(db):
    counter = {"n": 0}

    def _make_passcode(user, code=None, expires_in=timedelta(hours=1), usage_limit=10, **extra):
        counter["n"] += 1
        now = utcnow()
        data = {
            "user_id": user.id,
            "code": code or f"CODE{counter['n']:04d}",
            "type": PasscodeType.EMPLOYEE,
            "status": PasscodeStatus.ACTIVE,
            "expiry_time": now + expires_in if expires_in is not None else None,
            "usage_limit": usage_limit,
            "permissions": ["basic_access"],
        }
        data.update(extra)
        # Pin the creation time before any past expiry so expired codes can be built.
        created_at = min(now, data["expiry_time"]) - timedelta(minutes=1) if data["expiry_time"] else now
        return PasscodeRepository(db).create(data, now=created_at)

    return _make_passcode


@pytest.fixture
def employee(make_user):
    return make_user(name="Alice Employee", user_type=UserType.EMPLOYEE)


@pytest.fixture
def admin(make_user):
    return make_user(name="Tenant Admin", user_type=UserType.TENANT_ADMIN, username="admin")


def auth_headers(user):
    token = AuthUtils.create_access_token({"sub": user.id, "user_type": user.user_type.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def employee_headers(employee):
    return auth_headers(employee)


@pytest.fixture
def headers_for():
    return auth_headers
