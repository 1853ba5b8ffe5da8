from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient

# Load environment variables from .env file
load_dotenv()

from estetica.core.scheduler import PeriodicScheduler
from estetica.core.security import create_staff_token
from estetica.dependencies import get_cache, get_clinic_store
from estetica.main import app
from estetica.repositories.memory import InMemoryClinicStore
from estetica.scheduling.permissions import Actor, Role
from estetica.scheduling.policy import WorkingHoursConfig
from estetica.services.scheduling_service import SchedulingService
from helpers import FixedClock, RecordingCalendar, RecordingNotifier, at


@pytest.fixture
def config() -> WorkingHoursConfig:
    """Default clinic rules."""
    return WorkingHoursConfig()


@pytest.fixture
def clock() -> FixedClock:
    """Clock set to the Saturday before the test Monday."""
    return FixedClock(datetime(2026, 10, 17, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryClinicStore:
    """Empty in-memory clinic store."""
    return InMemoryClinicStore()


@pytest.fixture
def hyaluronic(store: InMemoryClinicStore) -> UUID:
    """Product consumed by the filler treatment."""
    return store.add_product("Hyaluronic acid 1ml", current_stock=10, min_stock=2).id


@pytest.fixture
def treatment(store: InMemoryClinicStore, hyaluronic: UUID):
    """One-hour filler treatment consuming two syringes."""
    return store.add_treatment("Lip filler", 60, required_products=[(hyaluronic, 2)])


@pytest.fixture
def practitioner_id(store: InMemoryClinicStore) -> UUID:
    """Registered practitioner."""
    return store.add_practitioner()


@pytest.fixture
def patient_id(store: InMemoryClinicStore) -> UUID:
    """Registered patient."""
    return store.add_patient()


@pytest.fixture
def secretary() -> Actor:
    return Actor(id=uuid4(), role=Role.SECRETARIA)


@pytest.fixture
def medico() -> Actor:
    return Actor(id=uuid4(), role=Role.MEDICO)


@pytest.fixture
def viewer() -> Actor:
    return Actor(id=uuid4(), role=Role.VIEWER)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def calendar() -> RecordingCalendar:
    return RecordingCalendar()


@pytest.fixture
def service(
    store: InMemoryClinicStore,
    notifier: RecordingNotifier,
    calendar: RecordingCalendar,
    config: WorkingHoursConfig,
    clock: FixedClock,
) -> SchedulingService:
    """Scheduling service over the in-memory store with recording collaborators."""
    return SchedulingService(
        store=store,
        notifier=notifier,
        calendar=calendar,
        config=config,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(store: InMemoryClinicStore) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client backed by the in-memory store."""

    async def override_get_clinic_store() -> AsyncGenerator[InMemoryClinicStore, None]:
        yield store

    app.dependency_overrides[get_clinic_store] = override_get_clinic_store
    app.dependency_overrides[get_cache] = lambda: None
    app.state.scheduler = PeriodicScheduler()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers_for(role: Role, user_id: UUID | None = None) -> dict:
    """Bearer headers for a staff member with the given role."""
    token = create_staff_token(user_id or uuid4(), role.value, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> dict:
    """Create authentication headers for a receptionist."""
    return auth_headers_for(Role.SECRETARIA)


@pytest.fixture
def medico_headers() -> dict:
    return auth_headers_for(Role.MEDICO)


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers_for(Role.ADMIN)


@pytest.fixture
def viewer_headers() -> dict:
    return auth_headers_for(Role.VIEWER)


@pytest.fixture
def sample_appointment_data(patient_id: UUID, practitioner_id: UUID, treatment) -> dict:
    """Sample appointment data for testing."""
    return {
        "patient_id": str(patient_id),
        "treatment_id": str(treatment.id),
        "practitioner_id": str(practitioner_id),
        "start_time": at(10).isoformat(),
        "notes": "First session",
    }

