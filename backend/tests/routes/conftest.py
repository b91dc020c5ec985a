from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
import pytest

from parq.api.dependencies import get_availability_index_dep, get_booking_engine
from parq.main import app


@pytest.fixture
def client(booking_engine, availability_index):
    """API client wired to the per-test engine; the lifespan (and its worker) never starts."""
    app.dependency_overrides[get_booking_engine] = lambda: booking_engine
    app.dependency_overrides[get_availability_index_dep] = lambda: availability_index
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def slot():
    """A two-hour window two days out; routes use the real clock."""
    start = (datetime.now(timezone.utc) + timedelta(days=2)).replace(
        minute=0, second=0, microsecond=0
    )
    return start, start + timedelta(hours=2)


@pytest.fixture
def create_booking(client, slot):
    def _create(space_id="space-1", renter_id="renter-1", window=None, price="10.00", **extra):
        start, end = window or slot
        response = client.post(
            "/api/v1/bookings",
            json={
                "space_id": space_id,
                "renter_id": renter_id,
                "start_at": start.isoformat(),
                "end_at": end.isoformat(),
                "expected_price": price,
                **extra,
            },
        )
        return response

    return _create
