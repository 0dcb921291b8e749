"""
Unit tests for the gateway location provider and device storage
"""

import pytest
import requests
from unittest.mock import Mock, patch

from utils.device_storage import DRIVER_UID_KEY, DeviceStorage
from utils.geolocation import (FOREGROUND, GatewayLocationProvider, LocationProviderError, PermissionStatus,
                               parse_fix)


def gateway_response(status_code=200, payload=None):
    response = Mock(status_code=status_code)
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


@pytest.fixture
def gateway():
    return GatewayLocationProvider('http://gateway.local:8765/')


class TestGatewayLocationProvider:

    def test_permission_granted(self, gateway):
        with patch.object(gateway.session, 'post', return_value=gateway_response(payload={'status': 'granted'})) as post:
            assert gateway.request_permission(FOREGROUND) is PermissionStatus.GRANTED
        assert post.call_args[0][0] == 'http://gateway.local:8765/permissions/foreground'

    def test_permission_unreachable(self, gateway):
        """An unreachable gateway grants nothing"""
        with patch.object(gateway.session, 'post', side_effect=requests.ConnectionError('refused')):
            assert gateway.request_permission(FOREGROUND) is PermissionStatus.UNDETERMINED

    def test_unknown_permission_value(self):
        assert PermissionStatus.parse('maybe') is PermissionStatus.UNDETERMINED
        assert PermissionStatus.parse('DENIED') is PermissionStatus.DENIED

    def test_current_position(self, gateway):
        payload = {'latitude': 12.97, 'longitude': 77.59, 'accuracy': 4, 'timestamp': 1760000000000}
        with patch.object(gateway.session, 'get', return_value=gateway_response(payload=payload)):
            sample = gateway.current_position()
        assert (sample.latitude, sample.longitude, sample.accuracy) == (12.97, 77.59, 4.0)
        assert sample.captured_at.year == 2025

    def test_no_fix_yet(self, gateway):
        with patch.object(gateway.session, 'get', return_value=gateway_response(status_code=204)):
            assert gateway.current_position() is None

    def test_gateway_error(self, gateway):
        with patch.object(gateway.session, 'get', return_value=gateway_response(status_code=503)):
            with pytest.raises(LocationProviderError):
                gateway.current_position()


class TestParseFix:

    def test_expo_style_payload(self):
        sample = parse_fix({'coords': {'latitude': 1.5, 'longitude': 2.5}, 'timestamp': None})
        assert sample.coordinates == [1.5, 2.5]
        assert sample.captured_at is None

    @pytest.mark.parametrize('payload', [None, [], {'latitude': 1.0}, {'latitude': 'x', 'longitude': 2},
                                         {'coords': None}, {'coords': [1.0, 2.0]}])
    def test_unusable_payloads(self, payload):
        assert parse_fix(payload) is None


class TestDeviceStorage:

    def test_item_lifecycle(self, device_storage):
        assert device_storage.get_item(DRIVER_UID_KEY) is None
        device_storage.set_item(DRIVER_UID_KEY, 'driver-1')
        device_storage.set_item(DRIVER_UID_KEY, 'driver-2')
        assert device_storage.get_item(DRIVER_UID_KEY) == 'driver-2'
        device_storage.remove_item(DRIVER_UID_KEY)
        assert device_storage.get_item(DRIVER_UID_KEY) is None

    def test_json_values(self, device_storage):
        device_storage.set_json('registration', {'time_interval': 30})
        assert device_storage.get_json('registration') == {'time_interval': 30}

    def test_unreadable_json(self, device_storage):
        device_storage.set_item('registration', '{broken')
        assert device_storage.get_json('registration') is None

    def test_values_survive_reopen(self, tmp_path):
        """A file-backed storage keeps its values across instances"""
        url = f"sqlite:///{tmp_path / 'device.db'}"
        first = DeviceStorage(url)
        first.set_item(DRIVER_UID_KEY, 'driver-1')
        first.close()

        second = DeviceStorage(url)
        assert second.get_item(DRIVER_UID_KEY) == 'driver-1'
        second.close()
