"""
Location Reporting Service

Periodically publishes the signed-in driver's position to drivers/{id} while
the app is backgrounded. Only the position fields (latitude, longitude,
lastUpdated, locationstatus) are written, always as merge writes, so the
lifecycle fields owned by the duty controller are never touched.

The background handler runs without any session: it reads the driver id from
durable device storage on every invocation.
"""

from typing import Callable, Optional, Dict, Any
import logging

from document_store import DocumentStore, SERVER_TIMESTAMP, StoreError
from models import DRIVERS, LocationStatus
from utils.device_storage import DRIVER_UID_KEY, DeviceStorage, StorageError
from utils.geolocation import BACKGROUND, FOREGROUND, LocationProvider, PermissionStatus, parse_fix
from utils.task_manager import LOCATION_TASK_NAME, TaskManager
from .audit_service import AuditService
from .exceptions import LocationPermissionError

logger = logging.getLogger(__name__)

TRACKING = 'tracking'
ERROR = 'error'

DEFAULT_TIME_INTERVAL = 30  # seconds
DEFAULT_DISTANCE_INTERVAL = 10  # meters

PERMISSION_ALERTS = {
    FOREGROUND: ('Location required',
                 'Allow location access so DutySync can report your position while on duty.'),
    BACKGROUND: ('Enable background location',
                 "Set DutySync location access to 'Allow all the time' for live tracking."),
}


def log_alert(title: str, message: str) -> None:
    logger.warning(f"ALERT {title}: {message}")


class LocationReportingService:
    """Service class for background location reporting"""

    def __init__(self, store: DocumentStore, storage: DeviceStorage, task_manager: TaskManager,
                 provider: LocationProvider, alert: Callable[[str, str], None] = log_alert,
                 audit_service: Optional[AuditService] = None,
                 time_interval: float = DEFAULT_TIME_INTERVAL,
                 distance_interval: float = DEFAULT_DISTANCE_INTERVAL,
                 task_name: str = LOCATION_TASK_NAME):
        self.store = store
        self.storage = storage
        self.task_manager = task_manager
        self.provider = provider
        self.alert = alert
        self.audit_service = audit_service or AuditService()
        self.time_interval = time_interval
        self.distance_interval = distance_interval
        self.task_name = task_name

        self.task_manager.define_task(self.task_name, self.handle_location_update)

    def _ensure_permissions(self):
        for tier in (FOREGROUND, BACKGROUND):
            status = self.provider.request_permission(tier)
            if status is not PermissionStatus.GRANTED:
                title, message = PERMISSION_ALERTS[tier]
                raise LocationPermissionError(tier, f"{title}: {message}")

    def _write_status(self, driver_id: str, status: LocationStatus) -> bool:
        try:
            self.store.set(DRIVERS, driver_id, {
                'locationstatus': status.value,
                'lastUpdated': SERVER_TIMESTAMP,
            }, merge=True)
            return True
        except StoreError as e:
            logger.error(f"Failed to mark driver {driver_id} {status.value}: {str(e)}")
            return False

    def current_driver(self) -> Optional[str]:
        """Driver whose position this device is reporting, if any"""
        return self.storage.get_item(DRIVER_UID_KEY)

    def start(self, driver_id: Optional[str] = None) -> str:
        """
        Begin background location reporting.

        The driver slot in device storage is only (re)pointed once permissions
        are granted; a failed start leaves any running registration and its
        driver untouched.

        Args:
            driver_id: Signed-in driver; defaults to the driver already stored on the device

        Returns:
            str: 'tracking' when reporting is (or already was) registered,
                'error' when a permission was denied or no driver is signed in
        """
        try:
            previous = self.storage.get_item(DRIVER_UID_KEY)
            driver_id = driver_id or previous
            if not driver_id:
                self.alert('Location tracking', 'Sign in as a driver before starting location tracking.')
                return ERROR

            self._ensure_permissions()

            if driver_id != previous:
                self.storage.set_item(DRIVER_UID_KEY, driver_id)

            if self.task_manager.has_started_location_updates(self.task_name):
                if previous and driver_id != previous:
                    logger.info(f"Location reporting handed over from driver {previous} to {driver_id}")
                    self._write_status(previous, LocationStatus.OFFLINE)
                else:
                    logger.info(f"Location reporting already active for driver {driver_id}")
                    return TRACKING
            else:
                self.task_manager.start_location_updates(self.task_name, self.time_interval,
                                                         self.distance_interval)
        except LocationPermissionError as e:
            title, message = PERMISSION_ALERTS[e.capability]
            self.alert(title, message)
            logger.warning(f"Location reporting not started, {e.capability} permission denied")
            return ERROR
        except StorageError as e:
            logger.error(f"Location reporting not started, device storage unavailable: {str(e)}")
            return ERROR

        self._write_status(driver_id, LocationStatus.ONLINE)
        self.audit_service.log_action(
            action='start_tracking',
            entity_type='driver',
            entity_id=driver_id,
            details={'time_interval': self.time_interval, 'distance_interval': self.distance_interval},
            user_id=driver_id
        )
        logger.info(f"Location reporting started for driver {driver_id}")
        return TRACKING

    def stop(self) -> None:
        """Unregister the background task, clear the driver slot and go offline"""
        try:
            driver_id = self.storage.get_item(DRIVER_UID_KEY)
            if self.task_manager.has_started_location_updates(self.task_name):
                self.task_manager.stop_location_updates(self.task_name)
            self.storage.remove_item(DRIVER_UID_KEY)
        except StorageError as e:
            logger.error(f"Failed to clear location reporting state: {str(e)}")
            raise

        if driver_id:
            self._write_status(driver_id, LocationStatus.OFFLINE)
            self.audit_service.log_action(
                action='stop_tracking',
                entity_type='driver',
                entity_id=driver_id,
                user_id=driver_id
            )
        logger.info(f"Location reporting stopped for driver {driver_id or '(none)'}")

    def is_tracking(self) -> bool:
        return self.task_manager.has_started_location_updates(self.task_name)

    def handle_location_update(self, data: Optional[Dict[str, Any]], error: Optional[str]) -> None:
        """
        Background task body, invoked with a batch of location fixes.

        Does nothing when no driver is signed in on this device. Write failures
        are logged and dropped; the next fix will try again.
        """
        if error:
            logger.error(f"Background location task error: {error}")
            return
        if not data:
            return

        locations = data.get('locations') or []
        sample = parse_fix(locations[0]) if locations else None
        if sample is None:
            return

        try:
            driver_id = self.storage.get_item(DRIVER_UID_KEY)
        except StorageError as e:
            logger.error(f"Background location task could not read driver slot: {str(e)}")
            return
        if not driver_id:
            return

        try:
            self.store.set(DRIVERS, driver_id, {
                'latitude': sample.latitude,
                'longitude': sample.longitude,
                'lastUpdated': SERVER_TIMESTAMP,
                'locationstatus': LocationStatus.ONLINE.value,
            }, merge=True)
            logger.debug(f"Position saved for driver {driver_id}: {sample.latitude}, {sample.longitude}")
        except StoreError as e:
            logger.error(f"Background location sync failed for driver {driver_id}: {str(e)}")
