"""
Shared fixtures: a pinned clock and an initialized in-memory storage factory.
"""

import asyncio

import pendulum
import pytest
import requests

from meetingscheduler.config import StorageConfig
from meetingscheduler.domain.models import MeetingBooking
from meetingscheduler.storage.factory import StorageFactory
from meetingscheduler.storage.kv import SessionKeyValueStore

TZ = "Asia/Kolkata"

# Monday, one hour before the default working hours open
NOW = pendulum.datetime(2024, 6, 3, 9, 0, tz=TZ)


def make_booking(**overrides) -> MeetingBooking:
    data = {
        "id": "meeting-1",
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "+919876543210",
        "meeting_type": "video",
        "duration": 30,
        "date": "2024-06-03",
        "time": "10:00",
    }
    data.update(overrides)
    return MeetingBooking(**data)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def factory(clock) -> StorageFactory:
    factory = StorageFactory(
        StorageConfig(backend="memory"), clock=clock, timezone=TZ, fallback_store=SessionKeyValueStore()
    )
    asyncio.run(factory.initialize())
    return factory


class BrokenSession:
    """HTTP session whose every request fails at the network level."""

    def request(self, *args, **kwargs):
        raise requests.exceptions.ConnectionError("network unreachable")
