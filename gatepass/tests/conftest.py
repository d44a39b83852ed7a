"""
Pytest configuration and fixtures.

Provides shared fixtures for testing including:
- A file-backed SQLite database per test
- Repositories over that database
- Mock external collaborators
- A controllable clock
- The lifecycle engine and status view
- An HTTP client over the FastAPI app
"""

import os

os.environ["SECRET_KEY"] = "test-secret-key-0123456789"
os.environ["API_KEY"] = "test-api-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EXPIRY_SWEEP_INTERVAL_SECONDS"] = "0"

from datetime import datetime, timedelta
from typing import AsyncIterator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatepass.application.documents import DocumentReleaser
from gatepass.application.notifications import NotificationRelay
from gatepass.application.status_view import StatusView
from gatepass.application.visit_lifecycle import VisitLifecycleEngine
from gatepass.core.security import CredentialCodec
from gatepass.domain.models import (
    DocumentBundle,
    GuestInfo,
    PinValidation,
    Resident,
)
from gatepass.domain.ports import DocumentStorage, NotificationDispatcher, PinValidator
from gatepass.infrastructure.db.repository import (
    AccessCredentialRepository,
    GateEventRepository,
    ResidentRepository,
    VisitRequestRepository,
)
from gatepass.infrastructure.db.session import (
    build_session_factory,
    create_test_engine,
    init_db,
)
from gatepass.infrastructure.storage import LocalDocumentStorage

TEST_SECRET_KEY = os.environ["SECRET_KEY"]
TEST_API_KEY = os.environ["API_KEY"]

ESTATE = "EST-001"
RESIDENT_REF = "res-thandi"
OTHER_RESIDENT_REF = "res-pieter"


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed whole-second instant."""
    return FakeClock(datetime(2026, 3, 2, 9, 30, 0))


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    Session factory over a fresh SQLite file.

    File-backed so that concurrent sessions share one database.
    """
    engine = create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'gatepass.db'}")
    await init_db(engine)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def visits(session_factory) -> VisitRequestRepository:
    return VisitRequestRepository(session_factory)


@pytest.fixture
def credentials(session_factory) -> AccessCredentialRepository:
    return AccessCredentialRepository(session_factory)


@pytest.fixture
def residents(session_factory) -> ResidentRepository:
    return ResidentRepository(session_factory)


@pytest.fixture
def gate_events(session_factory) -> GateEventRepository:
    return GateEventRepository(session_factory)


@pytest.fixture
async def seeded_residents(residents: ResidentRepository) -> list[Resident]:
    """Two residents of the test estate, in units 12 and 14."""
    seeded = [
        Resident(
            reference=RESIDENT_REF,
            name="Thandi Mokoena",
            unit_reference="U12",
            estate_reference=ESTATE,
        ),
        Resident(
            reference=OTHER_RESIDENT_REF,
            name="Pieter van Wyk",
            unit_reference="U14",
            estate_reference=ESTATE,
        ),
    ]
    for resident in seeded:
        await residents.create(resident)
    return seeded


@pytest.fixture
def codec() -> CredentialCodec:
    return CredentialCodec(TEST_SECRET_KEY)


@pytest.fixture
def pin_validator() -> AsyncMock:
    """PIN validator accepting every PIN for a known guest."""
    validator = AsyncMock(spec=PinValidator)
    validator.validate.return_value = PinValidation(
        valid=True,
        guest_name="Sipho Dlamini",
        purpose="Plumbing repair",
    )
    return validator


@pytest.fixture
def document_storage() -> AsyncMock:
    """Create mock document storage."""
    storage = AsyncMock(spec=DocumentStorage)
    storage.store.return_value = "identity/2026-03-02/doc.bin"
    storage.delete.return_value = True
    return storage


@pytest.fixture
def notifier() -> AsyncMock:
    """Create mock notification dispatcher."""
    dispatcher = AsyncMock(spec=NotificationDispatcher)
    dispatcher.notify.return_value = True
    return dispatcher


@pytest.fixture
def relay(notifier) -> NotificationRelay:
    """Relay with no backoff delay."""
    return NotificationRelay(
        notifier,
        attempts=2,
        base_delay_seconds=0,
        max_delay_seconds=0,
        timeout_seconds=1.0,
    )


@pytest.fixture
def engine(
    visits,
    credentials,
    residents,
    gate_events,
    pin_validator,
    relay,
    codec,
    document_storage,
    clock,
    seeded_residents,
) -> VisitLifecycleEngine:
    """Lifecycle engine wired to the test database and mocks."""
    return VisitLifecycleEngine(
        visits=visits,
        credentials=credentials,
        pin_validator=pin_validator,
        directory=residents,
        notifications=relay,
        codec=codec,
        document_releaser=DocumentReleaser(document_storage, visits),
        gate_events=gate_events,
        request_window=timedelta(hours=24),
        credential_window=timedelta(hours=2),
        clock=clock,
    )


@pytest.fixture
def status_view(visits, credentials, clock) -> StatusView:
    return StatusView(visits, credentials, poll_interval_seconds=10, clock=clock)


@pytest.fixture
def guest() -> GuestInfo:
    return GuestInfo(name="Lerato Nkosi", contact="+27821234567", purpose="Visiting family")


@pytest.fixture
def pedestrian_documents() -> DocumentBundle:
    return DocumentBundle(identity_document_ref="identity/2026-03-02/id.bin")


@pytest.fixture
def driver_documents() -> DocumentBundle:
    return DocumentBundle(
        identity_document_ref="identity/2026-03-02/id.bin",
        vehicle_document_ref="vehicle/2026-03-02/disc.bin",
    )


@pytest.fixture
async def async_client(
    tmp_path,
    session_factory,
    seeded_residents,
    pin_validator,
    relay,
) -> AsyncIterator[AsyncClient]:
    """
    HTTP client over the app, bound to the test database.

    Documents go to a real storage root under tmp_path.
    """
    from gatepass.api.deps import (
        get_document_storage,
        get_notification_relay,
        get_pin_validator,
    )
    from gatepass.core.security import get_rate_limiter
    from gatepass.infrastructure.db.session import get_session_factory
    from gatepass.main import app

    storage = LocalDocumentStorage(tmp_path / "documents")

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_pin_validator] = lambda: pin_validator
    app.dependency_overrides[get_document_storage] = lambda: storage
    app.dependency_overrides[get_notification_relay] = lambda: relay
    get_rate_limiter().reset()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-API-Key": TEST_API_KEY},
    ) as client:
        yield client

    await relay.drain()
    app.dependency_overrides.clear()
