#!/usr/bin/env python3
"""
Fleet Management Commands for DutySync

Usage:
    python fleet_commands.py --help
    python fleet_commands.py status
    python fleet_commands.py reconcile
    python fleet_commands.py provision-driver --id UID --name "Ravi Kumar" --phone 9876543210
    python fleet_commands.py provision-admin --id UID --name "Operations"
"""

import os
import sys
import argparse
import logging

from app import create_app, get_services
from services.exceptions import SyncError, ValidationError
from utils.config_validator import check_production_readiness

logger = logging.getLogger(__name__)

def setup_app_context():
    """Setup Flask application context for fleet operations."""
    # Set a temporary SESSION_SECRET for CLI operations if not set
    if not os.environ.get('SESSION_SECRET'):
        os.environ['SESSION_SECRET'] = 'cli_temp_secret_not_for_production'

    app = create_app({'RECONCILE_INTERVAL_MINUTES': 0, 'LOCATION_TRACKING_ENABLED': False})
    return app.app_context()

def cmd_status(args):
    """Display configuration and fleet status."""
    with setup_app_context():
        print("=" * 60)
        print("DUTYSYNC STATUS REPORT")
        print("=" * 60)

        readiness = check_production_readiness()
        print(f"Production Ready: {'YES' if readiness['production_ready'] else 'NO'}")
        for issue in readiness['issues']:
            print(f"  - {issue}")
        print()

        stats = get_services().reporting.dashboard_stats()
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")

def cmd_reconcile(args):
    """Repair driver records that drifted from their tasks."""
    with setup_app_context():
        report = get_services().reconciliation.reconcile()
        print(f"Checked {report.checked} drivers, corrected {len(report.corrected)}, "
              f"failed {len(report.failed)}")
        for correction in report.corrected:
            print(f"  {correction['driver_id']}: {correction['from']} -> {correction['to']}")
        if report.failed:
            sys.exit(2)

def cmd_provision_driver(args):
    """Create or refresh a driver's profile and operational record."""
    with setup_app_context():
        record = get_services().drivers.provision_driver(args.id, args.name, args.email, args.phone)
        print(f"Driver {record.id} ready: state={record.operational_state.name}, "
              f"lastTripEndKm={record.last_trip_end_km:g}")

def cmd_provision_admin(args):
    """Create or refresh an admin profile."""
    with setup_app_context():
        get_services().drivers.provision_admin(args.id, args.name, args.email, args.phone)
        print(f"Admin {args.id} ready")

def build_parser():
    parser = argparse.ArgumentParser(
        description="Fleet Management Commands for DutySync",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('status', help='Display configuration and fleet status')
    subparsers.add_parser('reconcile', help='Repair driver records from their tasks')

    for name, help_text in (('provision-driver', 'Provision a driver'),
                            ('provision-admin', 'Provision an admin')):
        provision_parser = subparsers.add_parser(name, help=help_text)
        provision_parser.add_argument('--id', required=True, help='Firebase uid of the account')
        provision_parser.add_argument('--name', required=True, help='Display name')
        provision_parser.add_argument('--email', default='', help='Email address')
        provision_parser.add_argument('--phone', default='', help='Phone number')

    return parser

COMMANDS = {
    'status': cmd_status,
    'reconcile': cmd_reconcile,
    'provision-driver': cmd_provision_driver,
    'provision-admin': cmd_provision_admin,
}

def main(argv=None):
    """Main command line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except ValidationError as e:
        print(f"Invalid input: {e.message}")
        sys.exit(1)
    except SyncError as e:
        logger.error(f"Store unavailable: {str(e)}")
        print(f"Store unavailable: {str(e)}")
        sys.exit(1)

if __name__ == "__main__":
    main()
