import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SUPPRESS_SEND"] = "1"
os.environ["REMINDERS_ENABLED"] = "0"
os.environ["SUPER_ADMIN_EMAIL"] = "admin@example.com"
os.environ["SUPER_ADMIN_PASSWORD"] = "admin123"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_dashboard.auth import hash_password
from booking_dashboard.database import Base, get_db
from booking_dashboard.email_service import get_mailer
from booking_dashboard.main import app
from booking_dashboard.models import Owner

OWNER_EMAIL = "clinic@example.com"
OWNER_PASSWORD = "secret1"

# ------------------ engine ------------------
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMailer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send(self, to, subject, html):
        if not to or self.fail:
            return False
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True

    def subjects_for(self, to):
        return [m["subject"] for m in self.sent if m["to"] == to]


# ------------------ fixtures ------------------
@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    # fresh tables for every test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(mailer):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def owner(db):
    owner = Owner(
        email=OWNER_EMAIL,
        password_hash=hash_password(OWNER_PASSWORD),
        status="active",
        clinic_name="Smile Clinic",
        clinic_email=OWNER_EMAIL,
        start_hour=9,
        end_hour=17,
        working_days=[0, 1, 2, 3, 4, 5, 6],
        slots_per_hour=1,
        services=["Consultation", "Cleaning"],
    )
    db.add(owner)
    db.commit()
    db.refresh(owner)
    return owner


@pytest.fixture
def owner_client(client, owner):
    response = client.post("/login", data={"email": OWNER_EMAIL, "password": OWNER_PASSWORD})
    assert response.status_code == 200
    return client
