import os

# Settings are read at import time; pin the test environment before parq is imported.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("USE_FAKE_INTEGRATIONS", "true")
os.environ.setdefault("RECONCILIATION_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from parq.core.availability_index import AvailabilityIndex  # noqa: E402
from parq.core.booking_policy import BookingPolicy  # noqa: E402
from parq.database import Base  # noqa: E402
from parq.integrations import FakeCatalogClient, FakeNotifierClient, ParkingSpace  # noqa: E402

# Import models so Base.metadata is populated for create_all.
import parq.models  # noqa: E402,F401
from parq.services.engine import BookingEngine, build_booking_engine  # noqa: E402


@pytest.fixture
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def unit_db(_unit_engine) -> Session:
    """Session on a fresh in-memory database; services commit for real."""
    SessionLocal = sessionmaker(
        bind=_unit_engine, autoflush=False, expire_on_commit=False, future=True
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog() -> FakeCatalogClient:
    return FakeCatalogClient(
        {
            "space-1": ParkingSpace(id="space-1", price_per_hour=Decimal("5.00"), host_id="host-1"),
            "space-2": ParkingSpace(id="space-2", price_per_hour=Decimal("8.00"), host_id="host-2"),
        }
    )


@pytest.fixture
def notifier() -> FakeNotifierClient:
    return FakeNotifierClient()


@pytest.fixture
def availability_index() -> AvailabilityIndex:
    return AvailabilityIndex()


@pytest.fixture
def policy() -> BookingPolicy:
    return BookingPolicy()


@pytest.fixture
def booking_engine(unit_db, availability_index, catalog, notifier, policy) -> BookingEngine:
    return build_booking_engine(unit_db, availability_index, catalog, notifier, policy)


@pytest.fixture
def published(booking_engine):
    """Every event published through the engine, in order."""
    from parq.events import (
        BookingCancelled,
        BookingCompleted,
        BookingCreated,
        BookingExtended,
        WindowReleased,
    )

    events = []
    for event_type in (
        BookingCreated,
        BookingCancelled,
        BookingCompleted,
        BookingExtended,
        WindowReleased,
    ):
        booking_engine.events.register(event_type, events.append)
    return events
