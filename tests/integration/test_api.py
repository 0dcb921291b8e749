"""
Integration tests for the DutySync HTTP API
"""

import pytest
from unittest.mock import patch

from document_store import StoreError
from models import DRIVERS, TASKS, USERS
from tests.conftest import DRIVER_ID, AssignDutyPayloadFactory
from tests.integration.conftest import login

pytestmark = pytest.mark.integration


def assign(client, headers, **overrides):
    response = client.post('/api/v1/admin/duties', json=AssignDutyPayloadFactory(**overrides), headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['task_id']


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'
        assert response.get_json()['tracking'] is False

    def test_request_id_echoed(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'req-42'})
        assert response.headers['X-Request-ID'] == 'req-42'

    def test_unknown_route_uses_envelope(self, client):
        response = client.get('/api/v1/nowhere')
        assert response.status_code == 404
        assert response.get_json() == {'success': False, 'error': 'not-found',
                                       'message': response.get_json()['message']}


class TestAuthentication:
    """Test session creation and logout"""

    def test_login_returns_role(self, client, driver):
        response = client.post('/api/v1/auth/session', json={'id_token': DRIVER_ID})
        data = response.get_json()
        assert data['success'] is True
        assert data['role'] == 'driver'
        assert data['name'] == 'Ravi Kumar'
        assert data['access_token']

    def test_invalid_token(self, client, driver):
        response = client.post('/api/v1/auth/session', json={'id_token': 'bad-token'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'authentication-failed'

    def test_unprovisioned_account(self, client):
        response = client.post('/api/v1/auth/session', json={'id_token': 'stranger'})
        assert response.status_code == 401

    def test_missing_token_field(self, client):
        response = client.post('/api/v1/auth/session', json={})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'missing-field'

    def test_no_bearer_token(self, client):
        response = client.get('/api/v1/driver/duties')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'unauthorized'

    def test_logout_revokes_token(self, client, driver_headers, store):
        store.set(DRIVERS, DRIVER_ID, {'locationstatus': 'online'}, merge=True)

        response = client.delete('/api/v1/auth/session', headers=driver_headers)

        assert response.status_code == 200
        assert response.get_json()['driver_synced'] is True
        assert store.get(DRIVERS, DRIVER_ID)['locationstatus'] == 'offline'

        again = client.get('/api/v1/driver/duties', headers=driver_headers)
        assert again.status_code == 401
        assert again.get_json()['error'] == 'token-revoked'

    def test_driver_cannot_use_admin_api(self, client, driver_headers):
        response = client.get('/api/v1/admin/dashboard', headers=driver_headers)
        assert response.status_code == 403
        assert response.get_json()['error'] == 'forbidden'

    def test_admin_cannot_use_driver_api(self, client, admin_headers):
        response = client.get('/api/v1/driver/duties', headers=admin_headers)
        assert response.status_code == 403


class TestDutyLifecycleApi:
    """Test assign -> start -> complete over HTTP"""

    def test_full_lifecycle(self, client, admin_headers, driver_headers, store):
        task_id = assign(client, admin_headers)

        duties = client.get('/api/v1/driver/duties?mode=active', headers=driver_headers).get_json()
        assert [duty['id'] for duty in duties['duties']] == [task_id]

        started = client.post(f'/api/v1/driver/duties/{task_id}/start',
                              json={'start_odometer': 1200}, headers=driver_headers)
        assert started.status_code == 200
        assert started.get_json()['status'] == 'in-progress'
        assert started.get_json()['tracking'] is None

        completed = client.post(f'/api/v1/driver/duties/{task_id}/complete',
                                json={'closing_km': 1255, 'fuel_quantity': 20, 'fuel_amount': 1500},
                                headers=driver_headers)
        data = completed.get_json()
        assert completed.status_code == 200
        assert data['status'] == 'completed'
        assert data['kilometers'] == 55
        assert data['message'] == 'Journey completed: 55 km'

        assert store.get(TASKS, task_id)['fuelAmount'] == 1500
        assert store.get(USERS, DRIVER_ID)['totalKms'] == 55
        assert store.get(DRIVERS, DRIVER_ID)['activeStatus'] == 'active'

    def test_assign_busy_driver_conflict(self, client, admin_headers, driver):
        assign(client, admin_headers)
        response = client.post('/api/v1/admin/duties', json=AssignDutyPayloadFactory(), headers=admin_headers)
        assert response.status_code == 409
        assert response.get_json()['error'] == 'driver-unavailable'

    def test_assign_unknown_driver(self, client, admin_headers):
        response = client.post('/api/v1/admin/duties', json=AssignDutyPayloadFactory(driver_id='ghost'),
                               headers=admin_headers)
        assert response.status_code == 404

    def test_assign_invalid_body(self, client, admin_headers, driver):
        response = client.post('/api/v1/admin/duties', json=AssignDutyPayloadFactory(tour_time='noon'),
                               headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'invalid-field'
        assert 'tour_time' in response.get_json()['message']

    def test_start_odometer_regression(self, client, admin_headers, driver_headers, store):
        store.set(DRIVERS, DRIVER_ID, {'lastTripEndKm': 100}, merge=True)
        task_id = assign(client, admin_headers)

        response = client.post(f'/api/v1/driver/duties/{task_id}/start',
                               json={'start_odometer': 95}, headers=driver_headers)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'odometer-regression'

    def test_start_other_drivers_duty(self, client, admin_headers, driver, driver_service):
        driver_service.provision_driver('driver-2', 'Bala')
        task_id = assign(client, admin_headers)
        headers = login(client, 'driver-2')

        response = client.post(f'/api/v1/driver/duties/{task_id}/start',
                               json={'start_odometer': 10}, headers=headers)

        assert response.status_code == 403
        assert response.get_json()['error'] == 'not-owner'

    def test_complete_before_start(self, client, admin_headers, driver_headers):
        task_id = assign(client, admin_headers)
        response = client.post(f'/api/v1/driver/duties/{task_id}/complete',
                               json={'closing_km': 50}, headers=driver_headers)
        assert response.status_code == 409
        assert response.get_json()['error'] == 'invalid-state'

    def test_cancel(self, client, admin_headers, driver, store):
        task_id = assign(client, admin_headers)

        response = client.delete(f'/api/v1/admin/duties/{task_id}', headers=admin_headers)

        assert response.status_code == 200
        assert store.get(TASKS, task_id) is None
        assert store.get(DRIVERS, DRIVER_ID)['activeStatus'] == 'active'

    def test_store_outage(self, client, admin_headers, driver, store):
        with patch.object(store, 'run_transaction', side_effect=StoreError('offline')):
            response = client.post('/api/v1/admin/duties', json=AssignDutyPayloadFactory(),
                                   headers=admin_headers)
        assert response.status_code == 503
        assert response.get_json()['error'] == 'sync-error'


class TestAdminViews:
    """Test dashboards and reports over HTTP"""

    def test_dashboard_and_available(self, client, admin_headers, driver):
        stats = client.get('/api/v1/admin/dashboard', headers=admin_headers).get_json()['stats']
        assert stats['total_drivers'] == 1
        assert stats['available'] == 1

        available = client.get('/api/v1/admin/drivers/available', headers=admin_headers).get_json()
        assert available['count'] == 1
        assert available['drivers'][0]['id'] == DRIVER_ID

    def test_duty_records_filter(self, client, admin_headers, driver):
        task_id = assign(client, admin_headers)
        data = client.get('/api/v1/admin/duty-records?filter=assigned', headers=admin_headers).get_json()
        assert [duty['id'] for duty in data['duties']] == [task_id]

        bad = client.get('/api/v1/admin/duty-records?filter=bogus', headers=admin_headers)
        assert bad.status_code == 400

    def test_daywise_report_and_csv(self, client, admin_headers, driver):
        assign(client, admin_headers, tour_date='2026-10-19')

        report = client.get('/api/v1/admin/reports/daywise?date=2026-10-19', headers=admin_headers).get_json()
        assert report['totals']['duties'] == 1

        export = client.get('/api/v1/admin/reports/daywise.csv?date=2026-10-19', headers=admin_headers)
        assert export.status_code == 200
        assert export.mimetype == 'text/csv'
        assert 'DutySync_Report_2026-10-19.csv' in export.headers['Content-Disposition']
        assert export.get_data(as_text=True).startswith('Date,Passenger,Driver')

    def test_driver_profile(self, client, admin_headers, driver):
        profile = client.get(f'/api/v1/admin/drivers/{DRIVER_ID}/profile', headers=admin_headers).get_json()
        assert profile['profile']['user']['name'] == 'Ravi Kumar'
        assert client.get('/api/v1/admin/drivers/ghost/profile', headers=admin_headers).status_code == 404

    def test_live_tracking(self, client, admin_headers, driver, store):
        store.set(DRIVERS, DRIVER_ID, {'latitude': 12.97, 'longitude': 77.59}, merge=True)
        data = client.get('/api/v1/admin/tracking/live', headers=admin_headers).get_json()
        assert data['online'] == 1
        assert data['drivers'][0]['latitude'] == 12.97

    def test_reconcile(self, client, admin_headers, driver, store):
        store.set(DRIVERS, DRIVER_ID, {'active': True, 'activeStatus': 'assigned'}, merge=True)
        data = client.post('/api/v1/admin/reconcile', headers=admin_headers).get_json()
        assert data['checked'] == 1
        assert data['corrected'][0]['to'] == 'AVAILABLE'

    def test_todays_duties(self, client, admin_headers, driver_headers):
        task_id = assign(client, admin_headers)
        data = client.get('/api/v1/driver/duties/today', headers=driver_headers).get_json()
        assert [duty['id'] for duty in data['duties']] == [task_id]


class TestDriverSelfService:
    """Test the driver's profile and trip history over HTTP"""

    def test_profile_view_and_edit(self, client, driver_headers, store):
        profile = client.get('/api/v1/driver/profile', headers=driver_headers).get_json()['profile']
        assert profile['name'] == 'Ravi Kumar'

        response = client.post('/api/v1/driver/profile', json={'name': 'Ravi K', 'phone': '9123456780'},
                               headers=driver_headers)

        assert response.status_code == 200
        assert response.get_json()['profile']['phone'] == '9123456780'
        assert store.get(USERS, DRIVER_ID)['name'] == 'Ravi K'

    def test_profile_edit_validation(self, client, driver_headers):
        response = client.post('/api/v1/driver/profile', json={'name': 'Ravi', 'phone': 'call me'},
                               headers=driver_headers)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'invalid-field'

    def test_history(self, client, admin_headers, driver_headers):
        task_id = assign(client, admin_headers)
        client.post(f'/api/v1/driver/duties/{task_id}/start', json={'start_odometer': 10}, headers=driver_headers)
        client.post(f'/api/v1/driver/duties/{task_id}/complete', json={'closing_km': 40}, headers=driver_headers)
        assign(client, admin_headers)

        data = client.get('/api/v1/driver/duties/history', headers=driver_headers).get_json()

        assert data['count'] == 1
        assert data['total_kilometers'] == 30
        assert data['groups'][0]['duties'][0]['id'] == task_id


class TestDriverRosterApi:

    def test_roster_search(self, client, admin_headers, driver, driver_service):
        driver_service.provision_driver('driver-2', 'Bala Subramanian')

        everyone = client.get('/api/v1/admin/drivers', headers=admin_headers).get_json()
        assert everyone['count'] == 2

        found = client.get('/api/v1/admin/drivers?search=ravi', headers=admin_headers).get_json()
        assert [item['id'] for item in found['drivers']] == [DRIVER_ID]
        assert found['drivers'][0]['totalKms'] == 0

    def test_roster_is_admin_only(self, client, driver_headers):
        assert client.get('/api/v1/admin/drivers', headers=driver_headers).status_code == 403
