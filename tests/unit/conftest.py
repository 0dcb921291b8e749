"""
Unit test fixtures for location reporting
"""

import pytest

from models import PositionSample
from services.location_service import LocationReportingService
from utils.device_storage import DeviceStorage
from utils.geolocation import BACKGROUND, FOREGROUND, LocationProvider, LocationProviderError, PermissionStatus
from utils.task_manager import TaskManager


class FakeLocationProvider(LocationProvider):
    """Scriptable stand-in for the telematics gateway"""

    def __init__(self, latitude=12.9716, longitude=77.5946):
        self.permissions = {FOREGROUND: PermissionStatus.GRANTED, BACKGROUND: PermissionStatus.GRANTED}
        self.permission_requests = []
        self.position = PositionSample(latitude, longitude, accuracy=5.0)
        self.fail_with = None

    def request_permission(self, tier):
        self.permission_requests.append(tier)
        return self.permissions[tier]

    def current_position(self):
        if self.fail_with:
            raise LocationProviderError(self.fail_with)
        return self.position

    def move_to(self, latitude, longitude):
        self.position = PositionSample(latitude, longitude, accuracy=5.0)


class FakeClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def device_storage():
    storage = DeviceStorage('sqlite://')
    yield storage
    storage.close()


@pytest.fixture
def task_manager(device_storage):
    return TaskManager(device_storage)


@pytest.fixture
def provider():
    return FakeLocationProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alerts():
    """Alerts raised to the user, as (title, message) pairs"""
    return []


@pytest.fixture
def location_service(store, device_storage, task_manager, provider, alerts, audit_service):
    return LocationReportingService(
        store, device_storage, task_manager, provider,
        alert=lambda title, message: alerts.append((title, message)),
        audit_service=audit_service,
        time_interval=30,
        distance_interval=10,
    )
