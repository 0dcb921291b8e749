"""
Unit tests for driver/task reconciliation
"""

import pytest
from unittest.mock import Mock, patch

from models import DRIVERS, TASKS, DriverOperationalState, DriverRecord
from services.exceptions import SyncError
from services.reconciliation_service import ReconciliationService
from utils.background_tasks import ReconciliationScheduler
from tests.conftest import DRIVER_ID


@pytest.fixture
def reconciliation(store, driver_service, audit_service):
    return ReconciliationService(store, driver_service, audit_service)


def stored_state(store, driver_id=DRIVER_ID):
    return DriverRecord.from_document(driver_id, store.get(DRIVERS, driver_id)).operational_state


class TestReconcileDriver:
    """Test repairs of a single driver record"""

    def test_consistent_driver_untouched(self, reconciliation, assign_duty):
        assign_duty()
        assert reconciliation.reconcile_driver(DRIVER_ID) is None

    @pytest.mark.parametrize('status, expected', [
        ('assigned', DriverOperationalState.ASSIGNED),
        ('in-progress', DriverOperationalState.ON_TRIP),
        ('completed', DriverOperationalState.AVAILABLE),
    ])
    def test_state_follows_tasks(self, reconciliation, store, driver, status, expected):
        store.set(TASKS, 't1', {'driverId': DRIVER_ID, 'status': status, 'closingKm': 50})
        store.set(DRIVERS, DRIVER_ID, {'active': False, 'activeStatus': 'in-progress'}, merge=True)

        reconciliation.reconcile_driver(DRIVER_ID)

        assert stored_state(store) is expected

    def test_corrupt_pairing_repaired(self, reconciliation, store, driver):
        """A pairing off the table is replaced"""
        store.set(DRIVERS, DRIVER_ID, {'active': False, 'activeStatus': 'active'}, merge=True)

        correction = reconciliation.reconcile_driver(DRIVER_ID)

        assert correction['to'] == 'AVAILABLE'
        assert correction['from'] == "(False, 'active')"
        assert stored_state(store) is DriverOperationalState.AVAILABLE

    def test_last_trip_end_raised(self, reconciliation, store, driver):
        """A lost lastTripEndKm write is restored from the latest closing reading"""
        store.set(TASKS, 't1', {'driverId': DRIVER_ID, 'status': 'completed', 'closingKm': 120})
        store.set(TASKS, 't2', {'driverId': DRIVER_ID, 'status': 'completed', 'closingKm': 160})

        correction = reconciliation.reconcile_driver(DRIVER_ID)

        assert correction['lastTripEndKm'] == 160
        assert store.get(DRIVERS, DRIVER_ID)['lastTripEndKm'] == 160

    def test_last_trip_end_never_lowered(self, reconciliation, store, driver):
        store.set(DRIVERS, DRIVER_ID, {'lastTripEndKm': 300}, merge=True)
        store.set(TASKS, 't1', {'driverId': DRIVER_ID, 'status': 'completed', 'closingKm': 160})

        assert reconciliation.reconcile_driver(DRIVER_ID) is None
        assert store.get(DRIVERS, DRIVER_ID)['lastTripEndKm'] == 300

    def test_missing_driver_record_created(self, reconciliation, store, driver):
        """A driver profile without an operational record gets one"""
        store.delete(DRIVERS, DRIVER_ID)

        correction = reconciliation.reconcile_driver(DRIVER_ID)

        assert correction['to'] == 'AVAILABLE'
        assert stored_state(store) is DriverOperationalState.AVAILABLE

    def test_position_fields_untouched(self, reconciliation, store, driver):
        store.set(DRIVERS, DRIVER_ID, {'active': False, 'activeStatus': 'active',
                                       'latitude': 12.9, 'locationstatus': 'online'}, merge=True)
        reconciliation.reconcile_driver(DRIVER_ID)
        data = store.get(DRIVERS, DRIVER_ID)
        assert data['latitude'] == 12.9
        assert data['locationstatus'] == 'online'


class TestReconcile:
    """Test the fleet-wide pass"""

    def test_report(self, reconciliation, driver_service, store, driver):
        driver_service.provision_driver('driver-2', 'Bala')
        store.set(DRIVERS, 'driver-2', {'active': True, 'activeStatus': 'assigned'}, merge=True)

        report = reconciliation.reconcile()

        assert report.checked == 2
        assert [item['driver_id'] for item in report.corrected] == ['driver-2']
        assert report.failed == []
        assert report.to_dict()['checked'] == 2

    def test_failures_do_not_stop_the_pass(self, reconciliation, driver_service, driver):
        driver_service.provision_driver('driver-2', 'Bala')
        original = reconciliation.reconcile_driver

        def flaky(driver_id):
            if driver_id == DRIVER_ID:
                raise SyncError('store unavailable')
            return original(driver_id)

        with patch.object(reconciliation, 'reconcile_driver', side_effect=flaky):
            report = reconciliation.reconcile()

        assert report.checked == 2
        assert report.failed == [DRIVER_ID]


class TestReconciliationScheduler:
    """Test the periodic runner"""

    def test_safe_reconcile_swallows_errors(self):
        service = Mock()
        service.reconcile.side_effect = SyncError('down')
        ReconciliationScheduler(service, 5)._safe_reconcile()
        service.reconcile.assert_called_once()

    @patch('utils.background_tasks.threading.Thread')
    def test_start_and_stop(self, thread_class):
        scheduler = ReconciliationScheduler(Mock(), 5)
        scheduler.start_scheduler()
        assert scheduler.running is True
        assert len(scheduler.scheduler.jobs) == 1
        thread_class.return_value.start.assert_called_once()

        scheduler.stop_scheduler()
        assert scheduler.running is False
        assert scheduler.scheduler.jobs == []
