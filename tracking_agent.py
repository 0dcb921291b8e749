#!/usr/bin/env python3
"""
DutySync Tracking Agent

Runs on the driver's device and reports its position to drivers/{id} in the
background. State lives in device storage, so `run` can be restarted at any
time and resumes reporting for whoever last started tracking.

Usage:
    python tracking_agent.py start --driver-id UID
    python tracking_agent.py run
    python tracking_agent.py status
    python tracking_agent.py stop
"""

import os
import sys
import argparse
import logging

from app import build_document_store
from firebase_service import FirebaseService
from services.location_service import ERROR, LocationReportingService
from utils.config_validator import env_number
from utils.device_storage import DRIVER_UID_KEY, DeviceStorage
from utils.geolocation import GatewayLocationProvider
from utils.logging_config import setup_logging
from utils.task_manager import LOCATION_TASK_NAME, LocationUpdatesRunner, TaskManager

logger = logging.getLogger('tracking')

def agent_config():
    return {
        'DOCUMENT_STORE': os.environ.get('DOCUMENT_STORE', 'sql').lower(),
        'DOCUMENT_STORE_URL': os.environ.get('DOCUMENT_STORE_URL', 'sqlite:///dutysync.db'),
        'DEVICE_STORAGE_URL': os.environ.get('DEVICE_STORAGE_URL', 'sqlite:///device_storage.db'),
        'LOCATION_GATEWAY_URL': os.environ.get('LOCATION_GATEWAY_URL', 'http://127.0.0.1:8765'),
        'LOCATION_TIME_INTERVAL_SECONDS': env_number('LOCATION_TIME_INTERVAL_SECONDS', 30),
        'LOCATION_DISTANCE_INTERVAL_METERS': env_number('LOCATION_DISTANCE_INTERVAL_METERS', 10),
        'POLL_SECONDS': int(env_number('LOCATION_POLL_SECONDS', 5)),
    }

def alert(title, message):
    print(f"{title}: {message}")

class TrackingAgent:
    """Wires the location service to device storage, the gateway and the store"""

    def __init__(self, config, store=None, provider=None):
        self.config = config
        self.store = store or build_document_store(config, FirebaseService(os.environ.get('FIREBASE_CREDENTIALS')))
        self.storage = DeviceStorage(config['DEVICE_STORAGE_URL'])
        self.task_manager = TaskManager(self.storage)
        self.provider = provider or GatewayLocationProvider(config['LOCATION_GATEWAY_URL'])
        self.location = LocationReportingService(
            self.store, self.storage, self.task_manager, self.provider,
            alert=alert,
            time_interval=config['LOCATION_TIME_INTERVAL_SECONDS'],
            distance_interval=config['LOCATION_DISTANCE_INTERVAL_METERS'],
        )
        self.runner = LocationUpdatesRunner(self.task_manager, self.provider,
                                            poll_seconds=config['POLL_SECONDS'])

    def status(self):
        return {
            'driver_id': self.storage.get_item(DRIVER_UID_KEY),
            'registration': self.task_manager.registration(LOCATION_TASK_NAME),
        }

def cmd_start(agent, args):
    result = agent.location.start(args.driver_id)
    print(f"Location tracking: {result}")
    if result == ERROR:
        sys.exit(1)

def cmd_stop(agent, args):
    agent.location.stop()
    print("Location tracking stopped")

def cmd_status(agent, args):
    state = agent.status()
    print(f"Driver: {state['driver_id'] or '(none)'}")
    if state['registration']:
        print(f"Reporting every {state['registration']['time_interval']}s "
              f"or {state['registration']['distance_interval']}m")
    else:
        print("Reporting: stopped")

def cmd_run(agent, args):
    state = agent.status()
    if state['registration'] is None:
        logger.info("No active registration yet; waiting for tracking to be started")
    else:
        logger.info(f"Resuming location reporting for driver {state['driver_id']}")
    agent.runner.run_forever()

COMMANDS = {
    'start': cmd_start,
    'stop': cmd_stop,
    'status': cmd_status,
    'run': cmd_run,
}

def build_parser():
    parser = argparse.ArgumentParser(
        description="DutySync background location agent",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    start_parser = subparsers.add_parser('start', help='Start reporting for a driver')
    start_parser.add_argument('--driver-id', help='Signed-in driver uid (defaults to the stored one)')
    subparsers.add_parser('stop', help='Stop reporting and clear the signed-in driver')
    subparsers.add_parser('status', help='Show the stored driver and registration')
    subparsers.add_parser('run', help='Run the reporting loop in the foreground')
    return parser

def main(argv=None, agent=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging()
    agent = agent or TrackingAgent(agent_config())
    try:
        COMMANDS[args.command](agent, args)
    except KeyboardInterrupt:
        agent.runner.stop()
        print("\nTracking agent stopped")

if __name__ == "__main__":
    main()
