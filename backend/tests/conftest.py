"""
Shared fixtures for the CaseFlow test suite.

Service tests run against a real SQLite database: an in-memory engine
shared through StaticPool, created fresh for every test. Outbound mail and
PDF rendering are replaced by small fakes where a test needs to control
them.
"""
import threading
import time
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from caseflow.database import Base
from caseflow.models import db_models  # noqa: F401  registers tables
from caseflow.models.db_models import UserDB, ActorRole
from caseflow.models.principal import Principal
from caseflow.services.lifecycle import CaseService
from caseflow.services.lifecycle.locks import KeyedLockRegistry


# =============================================================================
# FAKES
# =============================================================================

class FakeMailer:
    """
    Records every send. Addresses listed in `fail_for` get a failure
    result, those in `raise_for` raise, those in `slow_for` sleep first.
    """

    supports_attachments = True

    def __init__(self, fail_for=(), raise_for=(), slow_for=(), delay=0.5):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.slow_for = set(slow_for)
        self.delay = delay
        self.sent = []
        self._lock = threading.Lock()

    def send(self, address, subject, body, attachments=None):
        with self._lock:
            self.sent.append({
                "address": address,
                "subject": subject,
                "body": body,
                "attachments": list(attachments or []),
            })
        if address in self.slow_for:
            time.sleep(self.delay)
        if address in self.raise_for:
            raise ConnectionError("connection reset by peer")
        if address in self.fail_for:
            return {"success": False, "message_id": None, "error": "550 mailbox unavailable"}
        return {"success": True, "message_id": f"<{uuid4()}@test>", "error": None}

    def addresses(self):
        return [m["address"] for m in self.sent]


def fake_renderer(template_kind, content):
    return b"%PDF-1.4 fake " + content["document_number"].encode()


def failing_renderer(template_kind, content):
    raise RuntimeError("font cache unavailable")


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# ACCOUNTS
# =============================================================================

def _make_user(db, role, email, full_name, **extra):
    user = UserDB(
        id=str(uuid4()),
        email=email,
        full_name=full_name,
        password_hash="not-a-real-hash",
        role=role,
        **extra,
    )
    db.add(user)
    db.commit()
    return user


def _principal(user):
    return Principal(id=user.id, role=ActorRole(user.role), display_name=user.full_name)


@pytest.fixture
def reporter_user(db):
    return _make_user(db, "user", "asha@example.com", "Asha Verma")


@pytest.fixture
def other_reporter_user(db):
    return _make_user(db, "user", "ravi@example.com", "Ravi Kumar")


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin", "admin@caseflow.gov", "Case Admin")


@pytest.fixture
def police_user(db):
    return _make_user(db, "police", "si.rao@caseflow.gov", "SI Rao", badge_number="PB-4411", station="Cyber Cell North")


@pytest.fixture
def other_police_user(db):
    return _make_user(db, "police", "si.khan@caseflow.gov", "SI Khan", badge_number="PB-5120")


@pytest.fixture
def reporter(reporter_user):
    return _principal(reporter_user)


@pytest.fixture
def other_reporter(other_reporter_user):
    return _principal(other_reporter_user)


@pytest.fixture
def admin(admin_user):
    return _principal(admin_user)


@pytest.fixture
def officer(police_user):
    return _principal(police_user)


@pytest.fixture
def other_officer(other_police_user):
    return _principal(other_police_user)


# =============================================================================
# SERVICE
# =============================================================================

@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def service(db, mailer):
    return CaseService(db, mailer=mailer, renderer=fake_renderer, locks=KeyedLockRegistry())


@pytest.fixture
def make_intake():
    """Factory for intake payloads in the legacy camelCase shape."""

    def _make(scammer=None, **overrides):
        data = {
            "caseType": "upi-fraud",
            "description": "Paid a parcel release fee to a caller posing as a courier agent",
            "amount": 15000,
            "incidentDate": "2024-03-14T10:30:00",
            "location": "Pune",
            "personalInfo": {"fullName": "Asha Verma"},
            "contactInfo": {"email": "asha@example.com", "phoneNumber": "9876500000"},
            "address": {"streetAddress": "12 MG Road", "city": "Pune", "state": "MH", "postalCode": "411001"},
        }
        if scammer is not None:
            data["scammerDetails"] = scammer
        data.update(overrides)
        return data

    return _make
