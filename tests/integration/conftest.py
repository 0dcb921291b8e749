"""
Fixtures for API tests through the Flask test client
"""

import pytest
from unittest.mock import Mock

from app import create_app
from tests.conftest import ADMIN_ID, DRIVER_ID


@pytest.fixture
def firebase():
    """Firebase stand-in: an ID token is accepted as the uid it names"""
    service = Mock()
    service.verify_id_token.side_effect = lambda token: {'uid': token} if token != 'bad-token' else None
    return service


@pytest.fixture
def app(store, firebase):
    """Create application for integration testing"""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test_secret_key_for_testing_only_0123456789',
        'DOCUMENT_STORE_INSTANCE': store,
        'FIREBASE_SERVICE': firebase,
        'LOCATION_TRACKING_ENABLED': False,
        'RECONCILE_INTERVAL_MINUTES': 0,
    })
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Test client for integration tests"""
    return app.test_client()


def login(client, uid):
    response = client.post('/api/v1/auth/session', json={'id_token': uid})
    assert response.status_code == 200, response.get_json()
    return {'Authorization': f"Bearer {response.get_json()['access_token']}"}


@pytest.fixture
def driver_headers(client, driver):
    return login(client, DRIVER_ID)


@pytest.fixture
def admin_headers(client, admin):
    return login(client, ADMIN_ID)
