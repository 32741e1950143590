import itertools
import os

os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-runs-0123456789abcdef")

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.core.settings import settings
from app.db.session import SessionLocal, engine
from app.main import app
from app.models import Base, Role
from app.services.authorization import caller_for_user
from app.services.users import create_user, register_doctor, register_patient

PASSWORD = "Password123!"
_sequence = itertools.count(1)


@pytest.fixture(autouse=True)
def reset_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api_client():
    return TestClient(app)


@pytest.fixture
def admin_user(db):
    return create_user(
        db, email="admin@clinic.example.com", password=PASSWORD, full_name="Admin", role=Role.admin
    )


@pytest.fixture
def admin_caller(db, admin_user):
    return caller_for_user(db, admin_user)


@pytest.fixture
def frontdesk_user(db):
    return create_user(
        db, email="desk@clinic.example.com", password=PASSWORD, full_name="Front Desk", role=Role.frontdesk
    )


@pytest.fixture
def frontdesk_caller(db, frontdesk_user):
    return caller_for_user(db, frontdesk_user)


@pytest.fixture
def make_patient(db):
    def _make(full_name: str = "Jane Patient"):
        n = next(_sequence)
        return register_patient(
            db, email=f"patient{n}@clinic.example.com", password=PASSWORD, full_name=full_name
        )

    return _make


@pytest.fixture
def make_doctor(db, admin_caller):
    def _make(full_name: str = "Gregory House", specialization: str = "Diagnostics"):
        n = next(_sequence)
        return register_doctor(
            db,
            actor=admin_caller,
            email=f"doctor{n}@clinic.example.com",
            password=PASSWORD,
            full_name=full_name,
            specialization=specialization,
            license_number=f"LIC-{n:05d}",
        )

    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient()


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def patient_caller(db, patient):
    return caller_for_user(db, patient.user)


@pytest.fixture
def doctor_caller(db, doctor):
    return caller_for_user(db, doctor.user)


@pytest.fixture
def headers_for():
    def _headers(user):
        token = create_access_token(
            subject=str(user.id),
            secret=settings.secret_key,
            alg=settings.jwt_alg,
            expires_minutes=30,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
