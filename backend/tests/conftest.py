import os

# Use in-memory sqlite for tests; must be set before cycletrac is imported
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from cycletrac.tracking.geolocation import ManualGeolocation, Position  # noqa: E402
from cycletrac.tracking.store import LocalStore, MemoryBackend  # noqa: E402


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 5, 1, 7, 0, 0, 123456, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FixedCadence:
    """Cadence source returning a constant rpm while moving."""

    def __init__(self, rpm: int = 90):
        self.rpm = rpm

    def compute_cadence(self, speed_kmh: float) -> int:
        return self.rpm if speed_kmh >= 5 else 0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cadence():
    return FixedCadence()


@pytest.fixture
def store():
    return LocalStore(MemoryBackend())


@pytest.fixture
def geo():
    return ManualGeolocation()


@pytest.fixture
def make_position():
    def _make(lat, lng, t_ms, altitude=None, speed=None):
        return Position(
            latitude=lat,
            longitude=lng,
            altitude=altitude,
            speed=speed,
            timestamp_millis=t_ms,
        )

    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient  # noqa: WPS433
    from cycletrac.db import Base, engine  # noqa: WPS433
    from cycletrac.main import app  # noqa: WPS433

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as c:
        yield c
