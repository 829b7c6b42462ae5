"""Pytest configuration for Bhandara Finder tests."""

import base64
from datetime import datetime, timedelta, timezone

import pytest

from bhandara.event_store import EventStore
from bhandara.models.config import BhandaraConfig, StorageBackend
from bhandara.models.event import Event
from bhandara.storage import MemoryStorage


IST = timezone(timedelta(hours=5, minutes=30))

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 13
PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock fixed at noon, 1 June 2024, Indian Standard Time."""
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=IST))


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, clock):
    return EventStore(storage, clock=clock)


@pytest.fixture
def memory_config():
    return BhandaraConfig(
        storage_backend=StorageBackend.MEMORY,
        storage_quota_bytes=None,
        refresh_interval_ms=60000,
    )


@pytest.fixture
def make_event():
    """Factory for events; defaults to 6 PM on 1 June 2024 IST."""
    counter = {"n": 0}

    def _make(**overrides) -> Event:
        counter["n"] += 1
        fields = {
            "id": f"event-{counter['n']}",
            "title": "Langar at Gurudwara",
            "description": "Dal, roti and kheer",
            "location": "Sector 15, Chandigarh",
            "image_data": PNG_DATA_URI,
            "event_time": datetime(2024, 6, 1, 18, 0, tzinfo=IST),
            "owner_id": "owner-a",
        }
        fields.update(overrides)
        return Event(**fields)

    return _make


@pytest.fixture
def valid_form():
    return {
        "title": "Bhandara at Hanuman Mandir",
        "description": "Puri, sabzi and halwa",
        "location": "Karol Bagh, Delhi",
        "date_time": "2024-06-02T11:00:00+05:30",
        "image": PNG_DATA_URI,
    }


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def png_data_uri():
    return PNG_DATA_URI
