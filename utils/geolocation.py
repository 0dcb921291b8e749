"""
Location providers for the tracking agent.

A provider answers two questions for the location reporter: has the driver
granted location access (foreground, then background), and where is the
vehicle right now. The shipped GatewayLocationProvider asks the vehicle's
telematics gateway over HTTP.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from models import PositionSample

logger = logging.getLogger(__name__)

FOREGROUND = 'foreground'
BACKGROUND = 'background'


class PermissionStatus(Enum):
    GRANTED = 'granted'
    DENIED = 'denied'
    UNDETERMINED = 'undetermined'

    @classmethod
    def parse(cls, value) -> 'PermissionStatus':
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNDETERMINED


class LocationProviderError(Exception):
    """Raised when the position source cannot be reached"""
    pass


class LocationProvider(ABC):

    @abstractmethod
    def request_permission(self, tier: str) -> PermissionStatus:
        """Ask for FOREGROUND or BACKGROUND location access"""
        ...

    @abstractmethod
    def current_position(self) -> Optional[PositionSample]:
        """Latest fix, or None while no fix is available"""
        ...


class GatewayLocationProvider(LocationProvider):
    """
    Reads permission grants and GPS fixes from the telematics gateway.

    Endpoints:
        POST {base_url}/permissions/<tier>  -> {"status": "granted" | "denied"}
        GET  {base_url}/position            -> {"latitude", "longitude", "accuracy", "timestamp"}
    """

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip('/')
        self.request_timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'DutySync-Tracker/1.0',
            'Accept': 'application/json'
        })

        retry_strategy = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def request_permission(self, tier: str) -> PermissionStatus:
        try:
            response = self.session.post(f"{self.base_url}/permissions/{tier}",
                                         timeout=self.request_timeout)
            response.raise_for_status()
            status = PermissionStatus.parse(response.json().get('status'))
        except (requests.RequestException, ValueError) as e:
            # An unreachable gateway cannot grant anything
            logger.error(f"Permission request for {tier} location failed: {str(e)}")
            return PermissionStatus.UNDETERMINED

        logger.info(f"{tier.capitalize()} location permission: {status.value}")
        return status

    def current_position(self) -> Optional[PositionSample]:
        try:
            response = self.session.get(f"{self.base_url}/position", timeout=self.request_timeout)
            if response.status_code == 204:
                return None
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise LocationProviderError(f"Gateway position request failed: {str(e)}") from e
        except ValueError as e:
            raise LocationProviderError(f"Gateway returned invalid JSON: {str(e)}") from e

        return parse_fix(payload)


def parse_fix(payload) -> Optional[PositionSample]:
    """Build a PositionSample from a gateway/expo style location payload"""
    if not isinstance(payload, dict):
        return None
    coords = payload.get('coords', payload)
    if not isinstance(coords, dict):
        return None
    latitude = coords.get('latitude')
    longitude = coords.get('longitude')
    if latitude is None or longitude is None:
        return None

    captured_at = None
    timestamp = payload.get('timestamp')
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        # epoch milliseconds
        captured_at = datetime.fromtimestamp(timestamp / 1000.0, tz=timezone.utc)

    try:
        return PositionSample(
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy=float(coords['accuracy']) if coords.get('accuracy') is not None else None,
            captured_at=captured_at,
        )
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed location fix: {payload!r}")
        return None
