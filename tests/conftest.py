import os
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Dict

import pytest

# Set environment for testing before the application settings are loaded
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test_booking.db"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

from fastapi.testclient import TestClient
from jose import jwt

from clinic_booking.api.deps import get_notification_dispatcher
from clinic_booking.core.config import settings
from clinic_booking.core.database import Base, SessionLocal, engine, redis_client
from clinic_booking.core.security import Actor, UserRole
from clinic_booking.main import app
from clinic_booking.models.doctor import Doctor
from clinic_booking.models.patient import Patient
from clinic_booking.models.slot import Slot, SlotState
from clinic_booking.models.user import User
from clinic_booking.services.notification_service import NotificationDispatcher

class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification instead of sending it."""

    def __init__(self):
        self.sent = []

    def _record(self, event, payload):
        self.sent.append((event, payload))
        return True

    def notify_created(self, **payload):
        return self._record("created", payload)

    def notify_confirmed(self, **payload):
        return self._record("confirmed", payload)

    def notify_cancelled(self, **payload):
        return self._record("cancelled", payload)

    def notify_rescheduled(self, **payload):
        return self._record("rescheduled", payload)

    def notify_rejected(self, **payload):
        return self._record("rejected", payload)

    def events(self):
        return [event for event, _ in self.sent]

class FailingDispatcher(NotificationDispatcher):
    """Every delivery attempt blows up, like an unreachable mail server."""

    def __init__(self):
        self.attempts = 0

    def _fail(self, **payload):
        self.attempts += 1
        raise ConnectionRefusedError("SMTP server unreachable")

    notify_created = _fail
    notify_confirmed = _fail
    notify_cancelled = _fail
    notify_rescheduled = _fail
    notify_rejected = _fail

@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    redis_client.data.clear()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db(test_db):
    session = SessionLocal()
    yield session
    session.close()

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

@pytest.fixture
def client(test_db, dispatcher):
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()

# Test data
SLOT_DAY = (datetime.utcnow() + timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)

def _slot(slot_id: int, doctor_id: int, hour: int, minute: int) -> Slot:
    start = SLOT_DAY.replace(hour=hour, minute=minute)
    return Slot(
        id=slot_id,
        doctor_id=doctor_id,
        start_time=start,
        end_time=start + timedelta(minutes=30),
        state=SlotState.AVAILABLE
    )

@pytest.fixture
def clinic(db):
    """
    One admin, two doctors, three patients and a morning of slots.

    Doctor 10 owns slots 1-3 (10:00, 10:30, 11:00); doctor 11 owns slot 4 (10:00).
    """
    db.add_all([
        User(id=1, email="admin@clinic.test", role=UserRole.ADMIN),
        User(id=10, email="house@clinic.test", role=UserRole.DOCTOR),
        User(id=11, email="grey@clinic.test", role=UserRole.DOCTOR),
        User(id=20, email="ana@example.com", role=UserRole.PATIENT),
        User(id=21, email="bruno@example.com", role=UserRole.PATIENT),
        User(id=22, email="carla@example.com", role=UserRole.PATIENT, is_active=False),
    ])
    db.flush()
    db.add_all([
        Doctor(id=10, first_name="Gregory", last_name="House", specialization="Diagnostics"),
        Doctor(id=11, first_name="Meredith", last_name="Grey"),
        Patient(id=20, first_name="Ana", last_name="Lopez"),
        Patient(id=21, first_name="Bruno", last_name="Diaz"),
        Patient(id=22, first_name="Carla", last_name="Ruiz"),
    ])
    db.flush()
    db.add_all([
        _slot(1, 10, 10, 0),
        _slot(2, 10, 10, 30),
        _slot(3, 10, 11, 0),
        _slot(4, 11, 10, 0),
    ])
    db.commit()

    return SimpleNamespace(
        admin=Actor(id=1, role=UserRole.ADMIN),
        doctor=Actor(id=10, role=UserRole.DOCTOR),
        other_doctor=Actor(id=11, role=UserRole.DOCTOR),
        patient=Actor(id=20, role=UserRole.PATIENT),
        other_patient=Actor(id=21, role=UserRole.PATIENT),
        inactive_patient=Actor(id=22, role=UserRole.PATIENT),
        day=SLOT_DAY.date(),
    )

def make_token(user_id: int, role: UserRole, token_type: str = "access") -> str:
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "token_type": token_type,
        "exp": datetime.utcnow() + timedelta(minutes=30),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def auth_headers(actor: Actor) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(actor.id, actor.role)}"}

def slot_state(db, slot_id: int) -> SlotState:
    db.expire_all()
    return db.get(Slot, slot_id).state
