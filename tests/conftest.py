"""
Pytest configuration and shared fixtures for DutySync
"""

import os

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'SESSION_SECRET': 'test_secret_key_for_testing_only_0123456789',
    'JWT_SECRET_KEY': 'test_jwt_secret_for_testing_only_0123456789',
    'DOCUMENT_STORE': 'sql',
    'DOCUMENT_STORE_URL': 'sqlite://',
    'LOCATION_TRACKING_ENABLED': 'false',
    'RECONCILE_INTERVAL_MINUTES': '0',
})

import pytest
import factory
from factory import Faker

from document_store import SQLDocumentStore
from models import DRIVERS
from services.audit_service import AuditService
from services.driver_service import DriverService
from services.duty_service import DutyService
from timezone_utils import get_ist_today

DRIVER_ID = 'driver-1'
ADMIN_ID = 'admin-1'


# Factory classes for test data generation
class PassengerFactory(factory.DictFactory):
    name = Faker('name')
    heads = 2
    contact = factory.Sequence(lambda n: f"98{n:08d}")
    designation = factory.Iterator(['Manager', 'Engineer', 'Director', 'Analyst'])
    department = factory.Iterator(['Finance', 'Operations', 'Sales', 'HR'])


class AssignDutyPayloadFactory(factory.DictFactory):
    driver_id = DRIVER_ID
    passenger = factory.SubFactory(PassengerFactory)
    tour_location = Faker('street_address')
    tour_date = factory.LazyFunction(get_ist_today)
    tour_time = '09:30'
    notes = 'Pickup at main gate'


@pytest.fixture
def store():
    """In-memory SQL document store"""
    store = SQLDocumentStore('sqlite://')
    yield store
    store.close()


@pytest.fixture
def audit_service():
    return AuditService()


@pytest.fixture
def driver_service(store, audit_service):
    return DriverService(store, audit_service)


@pytest.fixture
def duty_service(store, driver_service, audit_service):
    return DutyService(store, driver_service, audit_service=audit_service)


@pytest.fixture
def driver(driver_service):
    """Provisioned, available driver"""
    return driver_service.provision_driver(DRIVER_ID, 'Ravi Kumar', 'ravi@example.com', '9876543210')


@pytest.fixture
def admin(driver_service):
    driver_service.provision_admin(ADMIN_ID, 'Fleet Admin', 'ops@example.com')
    return ADMIN_ID


@pytest.fixture
def assign_duty(duty_service, driver):
    """Assign a duty to the provisioned driver; keyword overrides go to assign_duty()"""
    def _assign(**overrides):
        payload = AssignDutyPayloadFactory()
        payload.update(overrides)
        return duty_service.assign_duty(**payload)
    return _assign


@pytest.fixture
def driver_doc(store):
    """Read drivers/{id} straight from the store"""
    return lambda driver_id=DRIVER_ID: store.get(DRIVERS, driver_id)
