from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from clinic_backend.core.security import create_access_token
from clinic_backend.database import create_engine_for
from clinic_backend.dependencies import get_notifier, get_session_factory
from clinic_backend.main import app
from clinic_backend.models import appointments, metadata
from clinic_backend.schemas.appointments import Appointment, AppointmentStatus
from clinic_backend.schemas.users import Actor, MedicalSpecialty, Role, User
from clinic_backend.services.account_service import AccountProvisioner
from clinic_backend.services.appointment_service import AppointmentWorkflowService
from clinic_backend.services.appointment_store import AppointmentStore
from clinic_backend.services.bulk_service import BulkOperationCoordinator
from clinic_backend.services.doctor_service import DoctorService
from clinic_backend.services.notification_service import NotificationDispatcher

DEFAULT_PASSWORD = "123456"


@dataclass
class SentEmail:
    to: str
    subject: str
    body: str


@dataclass
class RecordingNotifier:
    """Notifier double that records emails and can be told to fail."""

    sent: list[SentEmail] = field(default_factory=list)
    failing_recipients: set[str] = field(default_factory=set)
    fail_all: bool = False

    async def send(self, to: str, subject: str, body: str) -> None:
        if self.fail_all or to in self.failing_recipients:
            raise ConnectionError(f"SMTP server refused {to}")
        self.sent.append(SentEmail(to, subject, body))

    def to(self, recipient: str) -> list[SentEmail]:
        return [email for email in self.sent if email.to == recipient]


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test."""
    test_engine = create_engine_for(
        f"sqlite+aiosqlite:///{tmp_path / 'clinic_test.db'}",
        poolclass=NullPool,
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> AppointmentStore:
    return AppointmentStore(session_factory, slot_capacity=3)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier: RecordingNotifier) -> NotificationDispatcher:
    return NotificationDispatcher(
        notifier=notifier,
        timeout_seconds=1.0,
        clinic_name="Test Clinic",
        contact_email="desk@clinic.test",
        contact_phone="555 0100",
        default_password=DEFAULT_PASSWORD,
    )


@pytest.fixture
def workflow(store: AppointmentStore, dispatcher: NotificationDispatcher) -> AppointmentWorkflowService:
    return AppointmentWorkflowService(
        store=store,
        dispatcher=dispatcher,
        provisioner=AccountProvisioner(store, DEFAULT_PASSWORD),
        doctors=DoctorService(store),
    )


@pytest.fixture
def coordinator(workflow: AppointmentWorkflowService) -> BulkOperationCoordinator:
    return BulkOperationCoordinator(workflow, max_concurrency=4)


@pytest_asyncio.fixture
async def clinic_users(store: AppointmentStore) -> dict[str, User]:
    """Staff and doctors with fixed IDs."""
    specs: dict[str, dict[str, Any]] = {
        "admin": {"id": 1, "email": "admin@clinic.test", "role": Role.ADMIN},
        "staff": {"id": 2, "email": "staff@clinic.test", "role": Role.STAFF},
        "doctor5": {
            "id": 5,
            "email": "dr.five@clinic.test",
            "role": Role.DOCTOR,
            "specialty": MedicalSpecialty.CARDIOLOGY.value,
        },
        "doctor7": {
            "id": 7,
            "email": "dr.seven@clinic.test",
            "role": Role.DOCTOR,
            "specialty": MedicalSpecialty.GENERAL_PRACTICE.value,
        },
        "doctor9": {
            "id": 9,
            "email": "dr.nine@clinic.test",
            "role": Role.DOCTOR,
            "specialty": MedicalSpecialty.NEUROLOGY.value,
        },
        "inactive_doctor": {
            "id": 11,
            "email": "dr.retired@clinic.test",
            "role": Role.DOCTOR,
            "specialty": MedicalSpecialty.CARDIOLOGY.value,
            "is_active": False,
        },
    }

    created = {}
    for key, values in specs.items():
        created[key] = await store.create_user(
            {
                "full_name": key.replace("_", " ").title(),
                "is_active": True,
                **values,
            }
        )
    return created


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=1, role=Role.ADMIN)


@pytest.fixture
def staff() -> Actor:
    return Actor(user_id=2, role=Role.STAFF)


@pytest.fixture
def doctor5() -> Actor:
    return Actor(user_id=5, role=Role.DOCTOR)


@pytest.fixture
def doctor7() -> Actor:
    return Actor(user_id=7, role=Role.DOCTOR)


AppointmentFactory = Callable[..., Awaitable[Appointment]]


@pytest.fixture
def make_appointment(
    session_factory: async_sessionmaker[AsyncSession],
    store: AppointmentStore,
) -> AppointmentFactory:
    """Insert an appointment directly in any status."""
    counter = {"n": 0}

    async def _make(
        status: AppointmentStatus | str = AppointmentStatus.PENDING,
        doctor_id: int | None = None,
        email: str | None = "patient@example.com",
        **overrides: Any,
    ) -> Appointment:
        counter["n"] += 1
        status_value = status.value if isinstance(status, AppointmentStatus) else status
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "full_name": "Jane Patient",
            "phone": "0901234567",
            "email": email,
            "department": MedicalSpecialty.CARDIOLOGY.value,
            "appointment_date": date.today() + timedelta(days=7),
            "appointment_time": time(8 + counter["n"] % 10, 0),
            "reason": "Chest pain",
            "status": status_value,
            "doctor_id": doctor_id,
            "created_at": now,
            "updated_at": now,
            "version": 1,
        }
        if AppointmentStatus(status_value) in (
            AppointmentStatus.PAYMENT_REQUESTED,
            AppointmentStatus.PAID,
            AppointmentStatus.COMPLETED,
        ):
            values["payment_requested"] = True
            values["payment_amount"] = Decimal("500000")
        values.update(overrides)

        async with session_factory() as session:
            async with session.begin():
                result = await session.execute(insert(appointments).values(**values))
                appointment_id = result.inserted_primary_key[0]
        return await store.get(appointment_id)

    return _make


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers_for(user_id: int) -> dict[str, str]:
    """Create authentication headers for testing protected endpoints."""
    token = create_access_token(data={"sub": str(user_id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(clinic_users: dict[str, User]) -> dict[str, str]:
    return auth_headers_for(clinic_users["staff"].id)


@pytest.fixture
def admin_headers(clinic_users: dict[str, User]) -> dict[str, str]:
    return auth_headers_for(clinic_users["admin"].id)


@pytest.fixture
def doctor5_headers(clinic_users: dict[str, User]) -> dict[str, str]:
    return auth_headers_for(clinic_users["doctor5"].id)


@pytest.fixture
def headers_for() -> Callable[[int], dict[str, str]]:
    return auth_headers_for
