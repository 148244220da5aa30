import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinicflow.api import deps
from clinicflow.clients.service_durations import StaticServiceDurations
from clinicflow.core.exceptions import CollaboratorUnavailable
from clinicflow.core.security import Actor, create_access_token
from clinicflow.db.models import Appointment
from clinicflow.db.session import get_session, init_db
from clinicflow.main import app
from clinicflow.schemas.predictions import NoShowPrediction, PriorityClassification, WaitTimePrediction
from clinicflow.services.lifecycle_service import LifecycleService

# Naive UTC, five minutes into the check-in window of a 09:00 booking
NOW = datetime(2026, 3, 2, 8, 5)
NINE_AM = datetime(2026, 3, 2, 9, 0)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def dispatch(self, payload):
        if self.fail:
            raise CollaboratorUnavailable("notifications", "service down")
        self.sent.append(payload)

    def events(self):
        return [payload["event"] for payload in self.sent]


class StubPredictor:
    def __init__(self, fail: bool = False):
        self.fail = fail

    def _check(self):
        if self.fail:
            raise CollaboratorUnavailable("predictor", "timed out")

    async def predict_no_show(self, appointment):
        self._check()
        return NoShowPrediction(no_show_probability=0.2, risk_level="LOW")

    async def estimate_wait_time(self, appointment, queue_length, now):
        self._check()
        return WaitTimePrediction(estimated_wait_time=queue_length * 15.0, queue_position=queue_length)

    async def classify_priority(self, appointment):
        self._check()
        return PriorityClassification(
            priority_level="HIGH",
            priority_score=80.0,
            urgency_factors=["fever"],
            recommendation="See within 30 minutes",
        )


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def predictor():
    return StubPredictor()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinicflow.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(session, predictor, notifier, clock):
    return LifecycleService(
        session,
        predictor=predictor,
        notifier=notifier,
        durations=StaticServiceDurations(15),
        clock=clock,
    )


@pytest.fixture
def patient():
    return Actor(id=uuid4(), role="patient", name="Asha Menon")


@pytest.fixture
def nurse():
    return Actor(id=uuid4(), role="nurse")


@pytest.fixture
def doctor():
    return Actor(id=uuid4(), role="doctor", name="Dr. Rao")


@pytest.fixture
def other_doctor():
    return Actor(id=uuid4(), role="doctor", name="Dr. Iyer")


@pytest.fixture
def make_appointment(session):
    """Insert an appointment directly and return its id."""
    async def _make(patient_id, appointment_date=NINE_AM, **fields):
        appointment = Appointment(patient_id=patient_id, appointment_date=appointment_date, **fields)
        session.add(appointment)
        await session.commit()
        return appointment.id
    return _make


@pytest.fixture
def auth_headers():
    def _headers(actor: Actor):
        token = create_access_token({"sub": str(actor.id), "role": actor.role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
async def client(session_factory, predictor, notifier, clock):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[deps.get_predictor] = lambda: predictor
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_durations] = lambda: StaticServiceDurations(15)
    app.dependency_overrides[deps.get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
