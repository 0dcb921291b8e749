"""
Reporting Service

Read-side views for admin dashboards and driver duty lists: available
drivers, fleet statistics from each driver's latest task, duty records,
day-wise reports with CSV export, the driver roster, driver profiles and
trip history, and live positions.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from io import StringIO
from typing import Dict, Any, List, Callable
import logging
import math

from defusedcsv import csv

from document_store import DocumentStore, Subscription
from models import DRIVERS, TASKS, USERS, DriverOperationalState, DriverRecord, TaskRecord, TaskStatus, UserRecord, UserRole
from timezone_utils import convert_to_ist, get_ist_time_naive, get_ist_today
from .exceptions import ValidationError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

RECORD_FILTERS = ('all', 'active') + tuple(status.value for status in TaskStatus)
DUTY_MODES = ('all', 'active')
OPEN_STATUSES = [TaskStatus.ASSIGNED.value, TaskStatus.IN_PROGRESS.value]

DAYWISE_CSV_HEADER = [
    'Date', 'Passenger', 'Driver', 'Location', 'Time', 'Status',
    'Opening KM', 'Closing KM', 'Total KM', 'Fuel Qty', 'Fuel Amount'
]


def _tasks_from_snapshot(snapshot) -> List[TaskRecord]:
    tasks = []
    for doc_id, data in snapshot:
        try:
            tasks.append(TaskRecord.from_document(doc_id, data))
        except ValueError:
            logger.warning(f"Skipping task {doc_id} with unknown status {data.get('status')!r}")
    return sorted(tasks, key=lambda task: task.sort_key, reverse=True)


def _history_day(task: TaskRecord) -> str:
    if isinstance(task.created_at, datetime):
        return convert_to_ist(task.created_at).strftime('%Y-%m-%d')
    return task.tour_date or ''


class ReportingService:
    """Service class for reporting and dashboard queries"""

    def __init__(self, store: DocumentStore):
        self.store = store

    def _driver_users(self) -> Dict[str, UserRecord]:
        rows = self.store.query(USERS, [('role', '==', UserRole.DRIVER.value)])
        return {doc_id: UserRecord.from_document(doc_id, data) for doc_id, data in rows}

    def _tasks(self, filters=None) -> List[TaskRecord]:
        return _tasks_from_snapshot(self.store.query(TASKS, filters))

    @staticmethod
    def _group_by_driver(tasks: List[TaskRecord]) -> Dict[str, List[TaskRecord]]:
        """Tasks per driver, newest first; tasks without a driver are ignored"""
        grouped = defaultdict(list)
        for task in tasks:
            if task.driver_id:
                grouped[task.driver_id].append(task)
        return grouped

    @staticmethod
    def _with_driver_name(task: TaskRecord, users: Dict[str, UserRecord]) -> Dict[str, Any]:
        record = task.to_dict()
        user = users.get(task.driver_id)
        record['driverName'] = (user.name if user and user.name else task.driver_name) or 'Not Assigned'
        return record

    @TransactionHelper.with_sync_errors
    def available_drivers(self) -> List[Dict[str, Any]]:
        """Drivers free to take a duty, for the assignment picker"""
        available = DriverOperationalState.AVAILABLE
        rows = self.store.query(DRIVERS, [
            ('activeStatus', '==', available.active_status.value),
            ('active', '==', available.active),
        ])
        users = self._driver_users()
        drivers = []
        for doc_id, data in rows:
            record = DriverRecord.from_document(doc_id, data)
            user = users.get(doc_id)
            drivers.append({
                'id': doc_id,
                'name': (user.name if user else '') or record.name,
                'email': user.email if user else '',
                'lastTripEndKm': record.last_trip_end_km,
            })
        return sorted(drivers, key=lambda driver: driver['name'].lower())

    @TransactionHelper.with_sync_errors
    def dashboard_stats(self) -> Dict[str, Any]:
        """
        Fleet overview for the admin dashboard.

        Returns:
            dict: total_drivers, drivers_with_duties, available, in_progress,
                pending, total_duties, generated_at
        """
        users = self._driver_users()
        tasks = self._tasks()
        latest = [driver_tasks[0] for driver_tasks in self._group_by_driver(tasks).values()]

        available = DriverOperationalState.AVAILABLE
        available_count = len(self.store.query(DRIVERS, [
            ('activeStatus', '==', available.active_status.value),
            ('active', '==', available.active),
        ]))

        return {
            'total_drivers': len(users),
            'drivers_with_duties': len(latest),
            'available': available_count,
            'in_progress': sum(1 for task in latest if task.status is TaskStatus.IN_PROGRESS),
            'pending': sum(1 for task in latest if task.status is TaskStatus.ASSIGNED),
            'total_duties': len(tasks),
            'generated_at': get_ist_time_naive().isoformat()
        }

    @TransactionHelper.with_sync_errors
    def duty_records(self, record_filter: str = 'all') -> List[Dict[str, Any]]:
        """
        Latest task per driver, narrowed by filter.

        Args:
            record_filter: 'all', 'active' (drivers currently Available) or a task status
        """
        if record_filter not in RECORD_FILTERS:
            raise ValidationError('invalid-field', f"Unknown duty record filter: {record_filter}")

        users = self._driver_users()
        grouped = self._group_by_driver(self._tasks())

        available_ids = set()
        if record_filter == 'active':
            available = DriverOperationalState.AVAILABLE
            available_ids = {doc_id for doc_id, _ in self.store.query(DRIVERS, [
                ('activeStatus', '==', available.active_status.value),
                ('active', '==', available.active),
            ])}

        selected = []
        for driver_id, driver_tasks in grouped.items():
            if record_filter == 'all':
                match = driver_tasks[0]
            elif record_filter == 'active':
                match = driver_tasks[0] if driver_id in available_ids else None
            else:
                match = next((task for task in driver_tasks if task.status.value == record_filter), None)
            if match is not None:
                selected.append(match)

        selected.sort(key=lambda task: task.sort_key, reverse=True)
        return [self._with_driver_name(task, users) for task in selected]

    @TransactionHelper.with_sync_errors
    def daywise_report(self, report_date: str) -> Dict[str, Any]:
        """Duties scheduled on one tour date, with kilometer and fuel totals"""
        try:
            datetime.strptime(report_date or '', '%Y-%m-%d')
        except ValueError:
            raise ValidationError('invalid-field', 'Report date must be YYYY-MM-DD')

        users = self._driver_users()
        tasks = self._tasks([('tourDate', '==', report_date)])
        tasks.sort(key=lambda task: task.tour_time or '')

        rows = [self._with_driver_name(task, users) for task in tasks]
        return {
            'date': report_date,
            'tasks': rows,
            'totals': {
                'duties': len(tasks),
                'completed': sum(1 for task in tasks if task.status is TaskStatus.COMPLETED),
                'kilometers': math.fsum(task.kilometers for task in tasks),
                'fuel_quantity': math.fsum(task.fuel_quantity for task in tasks),
                'fuel_amount': math.fsum(task.fuel_amount for task in tasks),
            }
        }

    def daywise_csv(self, report_date: str) -> str:
        """Day-wise report as CSV text"""
        report = self.daywise_report(report_date)

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(DAYWISE_CSV_HEADER)
        for row in report['tasks']:
            opening = row['openingKm'] or 0
            closing = row['closingKm'] or 0
            writer.writerow([
                report_date,
                row['passenger']['name'] or 'N/A',
                row['driverName'] or 'N/A',
                row['tourLocation'] or 'N/A',
                row['tourTime'] or 'N/A',
                row['status'],
                f"{opening:g}",
                f"{closing:g}",
                f"{row['kilometers']:g}",
                f"{row['fuelQuantity']:g}",
                f"{row['fuelAmount']:g}",
            ])
        return output.getvalue()

    @TransactionHelper.with_sync_errors
    def driver_profile(self, driver_id: str) -> Dict[str, Any]:
        """User info, operational record, current duty and completed history for one driver"""
        user_data = self.store.get(USERS, driver_id)
        if user_data is None:
            raise ValidationError('not-found', f"Driver {driver_id} not found")
        user = UserRecord.from_document(driver_id, user_data)

        driver_data = self.store.get(DRIVERS, driver_id)
        driver = DriverRecord.from_document(driver_id, driver_data) if driver_data is not None else None

        tasks = self._tasks([('driverId', '==', driver_id)])
        active_task = (next((task for task in tasks if task.status is TaskStatus.IN_PROGRESS), None)
                       or next((task for task in tasks if task.status is TaskStatus.ASSIGNED), None))
        history = [task for task in tasks if task.status is TaskStatus.COMPLETED]

        return {
            'user': user.to_dict(),
            'driver': driver.to_dict() if driver else None,
            'on_duty': active_task is not None,
            'active_task': active_task.to_dict() if active_task else None,
            'history': [task.to_dict() for task in history],
            'total_duties': len(tasks),
            'completed_duties': len(history),
            'total_kilometers': user.total_kms,
        }

    @TransactionHelper.with_sync_errors
    def driver_duties(self, driver_id: str, mode: str = 'all') -> List[Dict[str, Any]]:
        """A driver's own duties, newest first; 'active' keeps assigned and in-progress ones"""
        if mode not in DUTY_MODES:
            raise ValidationError('invalid-field', f"Unknown duty list mode: {mode}")

        filters = [('driverId', '==', driver_id)]
        if mode == 'active':
            filters.append(('status', 'in', OPEN_STATUSES))
        return [task.to_dict() for task in self._tasks(filters)]

    @TransactionHelper.with_sync_errors
    def today_duties(self, driver_id: str) -> List[Dict[str, Any]]:
        """Open duties scheduled for today (IST), earliest tour time first"""
        tasks = self._tasks([
            ('driverId', '==', driver_id),
            ('tourDate', '==', get_ist_today()),
        ])
        tasks = [task for task in tasks if not task.status.is_terminal]
        tasks.sort(key=lambda task: task.tour_time or '')
        return [task.to_dict() for task in tasks]

    @TransactionHelper.with_sync_errors
    def driver_roster(self, search: str = '') -> List[Dict[str, Any]]:
        """Every driver account with lifetime kilometers, narrowed by a case-insensitive name search"""
        needle = (search or '').strip().lower()
        users = self._driver_users()
        drivers = {doc_id: DriverRecord.from_document(doc_id, data)
                   for doc_id, data in self.store.query(DRIVERS)}

        roster = []
        for driver_id, user in users.items():
            if needle and needle not in (user.name or '').lower():
                continue
            record = drivers.get(driver_id)
            roster.append({
                'id': driver_id,
                'name': user.name,
                'email': user.email,
                'phone': user.phone,
                'totalKms': user.total_kms,
                'activeStatus': record.active_status if record else None,
                'locationstatus': record.location_status if record else 'offline',
            })
        return sorted(roster, key=lambda item: (item['name'] or '').lower())

    @TransactionHelper.with_sync_errors
    def driver_history(self, driver_id: str) -> Dict[str, Any]:
        """
        A driver's completed duties, newest first, grouped by the IST day they
        were created ('Today', 'Yesterday' or the date).
        """
        tasks = self._tasks([
            ('driverId', '==', driver_id),
            ('status', '==', TaskStatus.COMPLETED.value),
        ])

        today = get_ist_time_naive().date()
        labels = {
            today.isoformat(): 'Today',
            (today - timedelta(days=1)).isoformat(): 'Yesterday',
        }
        groups = {}
        for task in tasks:
            day = _history_day(task)
            if day not in groups:
                groups[day] = {'date': day, 'label': labels.get(day, day), 'duties': []}
            groups[day]['duties'].append(task.to_dict())

        return {
            'count': len(tasks),
            'total_kilometers': math.fsum(task.kilometers for task in tasks),
            'groups': list(groups.values()),
        }

    @TransactionHelper.with_sync_errors
    def live_positions(self) -> List[Dict[str, Any]]:
        """Every driver with the last reported position, for the live map"""
        users = self._driver_users()
        drivers = {doc_id: DriverRecord.from_document(doc_id, data)
                   for doc_id, data in self.store.query(DRIVERS)}

        positions = []
        for driver_id, user in users.items():
            record = drivers.get(driver_id)
            latitude = record.latitude if record else None
            longitude = record.longitude if record else None
            has_fix = all(isinstance(value, (int, float)) and not isinstance(value, bool)
                          and math.isfinite(value) for value in (latitude, longitude))
            positions.append({
                'id': driver_id,
                'name': user.name or 'Unknown Driver',
                'email': user.email,
                'latitude': latitude if has_fix else None,
                'longitude': longitude if has_fix else None,
                'isOnline': has_fix,
                'locationstatus': record.location_status if record else 'offline',
                'lastUpdated': record.to_dict()['lastUpdated'] if record else None,
            })
        return sorted(positions, key=lambda item: item['name'].lower())

    @TransactionHelper.with_sync_errors
    def watch_driver_duties(self, driver_id: str, on_change: Callable[[List[TaskRecord]], None],
                            mode: str = 'all') -> Subscription:
        """
        Push a driver's duty list to on_change on every change.

        The caller owns the returned Subscription and must unsubscribe() it.
        """
        if mode not in DUTY_MODES:
            raise ValidationError('invalid-field', f"Unknown duty list mode: {mode}")

        filters = [('driverId', '==', driver_id)]
        if mode == 'active':
            filters.append(('status', 'in', OPEN_STATUSES))
        return self.store.subscribe(TASKS, filters,
                                    lambda snapshot: on_change(_tasks_from_snapshot(snapshot)))
