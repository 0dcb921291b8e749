"""
Background task registry and the location updates runner.

TaskManager keeps named handlers (defined at import time by the location
service) and persists "location updates started" registrations in device
storage. LocationUpdatesRunner plays the operating system's part: it polls
the location provider on a schedule and hands fixes to the registered task
whenever the time or distance interval is reached.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import schedule

from models import PositionSample
from .device_storage import DeviceStorage
from .geolocation import LocationProvider, LocationProviderError

logger = logging.getLogger(__name__)

LOCATION_TASK_NAME = 'background-location-task'
REGISTRATION_PREFIX = 'location-updates:'

TaskHandler = Callable[[Optional[Dict[str, Any]], Optional[str]], None]


class TaskManager:
    """Registry of named background tasks with durable start/stop state"""

    def __init__(self, storage: DeviceStorage):
        self.storage = storage
        self._handlers: Dict[str, TaskHandler] = {}

    def define_task(self, name: str, handler: TaskHandler) -> None:
        if name in self._handlers and self._handlers[name] is not handler:
            logger.warning(f"Redefining background task '{name}'")
        self._handlers[name] = handler

    def is_task_defined(self, name: str) -> bool:
        return name in self._handlers

    def registration(self, name: str) -> Optional[Dict[str, Any]]:
        return self.storage.get_json(REGISTRATION_PREFIX + name)

    def has_started_location_updates(self, name: str) -> bool:
        return self.registration(name) is not None

    def start_location_updates(self, name: str, time_interval: float, distance_interval: float) -> None:
        if not self.is_task_defined(name):
            raise KeyError(f"Background task '{name}' is not defined")
        self.storage.set_json(REGISTRATION_PREFIX + name, {
            'time_interval': time_interval,
            'distance_interval': distance_interval,
        })
        logger.info(f"Location updates registered for '{name}' "
                    f"(every {time_interval}s or {distance_interval}m)")

    def stop_location_updates(self, name: str) -> None:
        self.storage.remove_item(REGISTRATION_PREFIX + name)
        logger.info(f"Location updates unregistered for '{name}'")

    def dispatch(self, name: str, data: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> None:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"No handler defined for background task '{name}', dropping message")
            return
        handler(data, error)


def fix_payload(sample: PositionSample) -> Dict[str, Any]:
    """Location message in the shape handed to background tasks"""
    timestamp = None
    if sample.captured_at is not None:
        timestamp = int(sample.captured_at.timestamp() * 1000)
    return {
        'coords': {
            'latitude': sample.latitude,
            'longitude': sample.longitude,
            'accuracy': sample.accuracy,
        },
        'timestamp': timestamp,
    }


class LocationUpdatesRunner:
    """
    Delivers location fixes to a registered background task.

    The registration is re-read from device storage on every tick, so a
    relaunched process picks up reporting where the previous one stopped.
    """

    def __init__(self, task_manager: TaskManager, provider: LocationProvider,
                 task_name: str = LOCATION_TASK_NAME, poll_seconds: int = 5,
                 clock: Callable[[], float] = time.monotonic):
        self.task_manager = task_manager
        self.provider = provider
        self.task_name = task_name
        self.poll_seconds = poll_seconds
        self.clock = clock
        self.scheduler = schedule.Scheduler()
        self.running = False
        self.runner_thread = None
        self._last_sample: Optional[PositionSample] = None
        self._last_sent_at: Optional[float] = None

    def _is_due(self, sample: PositionSample, registration: Dict[str, Any]) -> bool:
        if self._last_sample is None or self._last_sent_at is None:
            return True
        elapsed = self.clock() - self._last_sent_at
        if elapsed >= float(registration.get('time_interval', 30)):
            return True
        return sample.distance_from(self._last_sample) >= float(registration.get('distance_interval', 10))

    def tick(self) -> bool:
        """Poll once; returns True when a fix was delivered"""
        registration = self.task_manager.registration(self.task_name)
        if registration is None:
            self._last_sample = None
            self._last_sent_at = None
            return False

        try:
            sample = self.provider.current_position()
        except LocationProviderError as e:
            self.task_manager.dispatch(self.task_name, None, str(e))
            return False
        if sample is None:
            return False

        if not self._is_due(sample, registration):
            return False

        self.task_manager.dispatch(self.task_name, {'locations': [fix_payload(sample)]}, None)
        self._last_sample = sample
        self._last_sent_at = self.clock()
        return True

    def start(self):
        """Run the polling loop on a daemon thread"""
        if self.running:
            logger.warning("Location updates runner already running")
            return

        self.scheduler.every(self.poll_seconds).seconds.do(self.tick)
        self.running = True
        self.runner_thread = threading.Thread(target=self.run_forever, daemon=True)
        self.runner_thread.start()
        logger.info(f"Location updates runner started for '{self.task_name}'")

    def run_forever(self):
        """Main scheduler loop"""
        if not self.scheduler.jobs:
            self.scheduler.every(self.poll_seconds).seconds.do(self.tick)
        self.running = True
        while self.running:
            try:
                self.scheduler.run_pending()
                time.sleep(1)
            except Exception as e:
                logger.error(f"Error in location updates loop: {str(e)}")
                time.sleep(self.poll_seconds)

    def stop(self):
        if not self.running:
            return
        self.running = False
        self.scheduler.clear()
        if self.runner_thread and self.runner_thread is not threading.current_thread():
            self.runner_thread.join(timeout=10)
        logger.info("Location updates runner stopped")
