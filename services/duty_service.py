"""
Duty Service

Handles the duty (task) lifecycle: assign -> start -> complete, plus the
admin cancel-and-requeue action. Each operation validates against the current
task and driver documents and then writes the task and the paired driver
record (and the user's lifetime odometer on completion).

Writes run inside one store transaction when the backend supports it. Without
transactions they are ordered task first, then driver, then user, so a crash
between them leaves the task as the source of truth for reconciliation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Union
import logging
import math

from document_store import DocumentStore, Increment, SERVER_TIMESTAMP, Transaction
from models import (DRIVERS, TASKS, USERS, DriverOperationalState, DriverRecord, Passenger,
                    TaskRecord, TaskStatus, UserRecord)
from .audit_service import AuditService
from .driver_service import ASSIGN, CANCEL, COMPLETE, START, DriverService
from .exceptions import InvalidDriverState, ValidationError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


@dataclass
class DutyTransitionResult:
    task_id: str
    status: Optional[TaskStatus]
    driver_synced: bool = True
    kilometers: Optional[float] = None
    tracking: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'status': self.status.value if self.status else None,
            'driver_synced': self.driver_synced,
            'kilometers': self.kilometers,
            'tracking': self.tracking,
        }


def _reading(value, field_name: str, required: bool = True) -> float:
    """Coerce an odometer or fuel figure to a non-negative float"""
    if value is None or value == '':
        if required:
            raise ValidationError('missing-field', f"{field_name} is required")
        return 0.0
    if isinstance(value, bool):
        raise ValidationError('invalid-field', f"{field_name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError('invalid-field', f"{field_name} must be a number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError('invalid-field', f"{field_name} must be a finite number")
    if number < 0:
        raise ValidationError('invalid-field', f"{field_name} cannot be negative")
    return number


def _valid_format(value: str, pattern: str) -> bool:
    try:
        datetime.strptime(value or '', pattern)
        return True
    except ValueError:
        return False


class DutyService:
    """Service class for duty lifecycle operations"""

    def __init__(self, store: DocumentStore, driver_service: Optional[DriverService] = None,
                 location_service=None, audit_service: Optional[AuditService] = None,
                 use_transactions: bool = True):
        self.store = store
        self.audit_service = audit_service or AuditService()
        self.driver_service = driver_service or DriverService(store, self.audit_service)
        self.location_service = location_service
        self.use_transactions = use_transactions

    def _run(self, operation):
        return TransactionHelper.run(self.store, operation, self.use_transactions)

    @staticmethod
    def _load_task(txn: Transaction, task_id: str) -> TaskRecord:
        data = txn.get(TASKS, task_id)
        if data is None:
            raise ValidationError('not-found', f"Duty {task_id} not found")
        try:
            return TaskRecord.from_document(task_id, data)
        except ValueError:
            raise ValidationError('invalid-state', f"Duty {task_id} has an unknown status: {data.get('status')!r}")

    @staticmethod
    def _check_preconditions(task: TaskRecord, driver_id: str, expected: TaskStatus):
        if task.driver_id != driver_id:
            raise ValidationError('not-owner', f"Duty {task.id} is not assigned to driver {driver_id}")
        if task.status is not expected:
            raise ValidationError('invalid-state',
                                  f"Duty {task.id} is {task.status.value}, expected {expected.value}")

    def _target_state(self, record: DriverRecord, event: str,
                      fallback: DriverOperationalState) -> DriverOperationalState:
        """
        Next driver state for a lifecycle event.

        The task status is authoritative: a driver record left stale by an
        earlier partial write is realigned instead of blocking the duty.
        """
        try:
            current = self.driver_service.current_state(record)
            return self.driver_service.next_state(current, event)
        except InvalidDriverState as e:
            logger.warning(f"Driver {record.id} record out of step with duty lifecycle, realigning: {str(e)}")
            return fallback

    def assign_duty(self, driver_id: str, passenger: Union[Passenger, Dict[str, Any]],
                    tour_location: str, tour_date: str, tour_time: str,
                    notes: str = '', assigned_by: Optional[str] = None) -> str:
        """
        Create a duty for an available driver and move the driver to Assigned.

        Args:
            driver_id: Driver receiving the duty
            passenger: Passenger details (name, heads, contact, designation, department)
            tour_location: Pickup / tour address
            tour_date: YYYY-MM-DD
            tour_time: HH:MM
            notes: Free-text instructions
            assigned_by: Admin user ID for the audit trail

        Returns:
            str: the new task ID

        Raises:
            ValidationError: missing/invalid fields, unknown or unavailable driver
            SyncError: if the store fails
        """
        if not isinstance(passenger, Passenger):
            passenger = Passenger.from_dict(passenger)
        tour_location = (tour_location or '').strip()

        errors = []
        if not driver_id:
            errors.append('Driver')
        errors.extend(passenger.validation_errors())
        if not tour_location:
            errors.append('Tour location')
        if not _valid_format(tour_date, '%Y-%m-%d'):
            errors.append('Tour date (YYYY-MM-DD)')
        if not _valid_format(tour_time, '%H:%M'):
            errors.append('Tour time (HH:MM)')
        if errors:
            raise ValidationError('invalid-field', f"Fix these fields: {', '.join(errors)}")

        task_id = self.store.new_document_id(TASKS)

        def operation(txn: Transaction) -> bool:
            driver_data = txn.get(DRIVERS, driver_id)
            user_data = txn.get(USERS, driver_id)
            if driver_data is None:
                raise ValidationError('not-found', f"Driver {driver_id} not found")

            record = DriverRecord.from_document(driver_id, driver_data)
            try:
                current = self.driver_service.current_state(record)
                target = self.driver_service.next_state(current, ASSIGN)
            except InvalidDriverState as e:
                raise ValidationError('driver-unavailable', f"Driver {driver_id} cannot take a new duty: {str(e)}")

            driver_name = record.name
            if user_data is not None:
                driver_name = UserRecord.from_document(driver_id, user_data).name or driver_name

            txn.set(TASKS, task_id, {
                'driverId': driver_id,
                'driverName': driver_name,
                'status': TaskStatus.ASSIGNED.value,
                'passenger': passenger.to_dict(),
                'tourLocation': tour_location,
                'tourDate': tour_date,
                'tourTime': tour_time,
                'notes': (notes or '').strip(),
                'kilometers': 0,
                'createdAt': SERVER_TIMESTAMP,
            })
            return TransactionHelper.companion_write(
                txn, f"assign {task_id} driver {driver_id}",
                lambda: self.driver_service.set_operational_state(driver_id, target, txn=txn))

        with self.driver_service.driver_lock(driver_id):
            driver_synced = self._run(operation)

        self.audit_service.log_action(
            action='assign_duty',
            entity_type='task',
            entity_id=task_id,
            details={
                'driver_id': driver_id,
                'tour_location': tour_location,
                'tour_date': tour_date,
                'driver_synced': driver_synced
            },
            user_id=assigned_by
        )
        logger.info(f"Duty assigned: Task {task_id} -> Driver {driver_id} ({tour_date} {tour_time})")
        return task_id

    def start_duty(self, task_id: str, driver_id: str, start_odometer) -> DutyTransitionResult:
        """
        Start an assigned duty.

        Args:
            task_id: Duty to start
            driver_id: Driver performing the start; must own the duty
            start_odometer: Opening odometer reading

        Returns:
            DutyTransitionResult with status in-progress

        Raises:
            ValidationError: odometer-regression when below the driver's lastTripEndKm,
                or a precondition failure (not-found, not-owner, invalid-state)
            SyncError: if the store fails
        """
        opening_km = _reading(start_odometer, 'Start odometer')

        def operation(txn: Transaction) -> bool:
            task = self._load_task(txn, task_id)
            self._check_preconditions(task, driver_id, TaskStatus.ASSIGNED)

            record = DriverRecord.from_document(driver_id, txn.get(DRIVERS, driver_id) or {})
            if opening_km < record.last_trip_end_km:
                raise ValidationError(
                    'odometer-regression',
                    f"Start odometer {opening_km:g} km is below the last trip's closing reading "
                    f"of {record.last_trip_end_km:g} km")

            target = self._target_state(record, START, DriverOperationalState.ON_TRIP)

            txn.update(TASKS, task_id, {
                'status': TaskStatus.IN_PROGRESS.value,
                'openingKm': opening_km,
                'startedAt': SERVER_TIMESTAMP,
            })
            return TransactionHelper.companion_write(
                txn, f"start {task_id} driver {driver_id}",
                lambda: self.driver_service.set_operational_state(driver_id, target, txn=txn))

        with self.driver_service.driver_lock(driver_id):
            driver_synced = self._run(operation)

        tracking = None
        if self.location_service is not None:
            tracking = self.location_service.start(driver_id)

        self.audit_service.log_action(
            action='start_duty',
            entity_type='task',
            entity_id=task_id,
            details={'opening_km': opening_km, 'driver_synced': driver_synced, 'tracking': tracking},
            user_id=driver_id
        )
        logger.info(f"Duty started: Task {task_id}, Driver {driver_id}, Opening {opening_km:g} km")
        return DutyTransitionResult(task_id, TaskStatus.IN_PROGRESS, driver_synced, tracking=tracking)

    def complete_duty(self, task_id: str, driver_id: str, close_odometer,
                      fuel_quantity=None, fuel_amount=None) -> DutyTransitionResult:
        """
        Complete an in-progress duty.

        The closing reading must be strictly greater than the opening reading;
        zero-distance trips are treated as a data-entry error. Location
        reporting is left running: it stops on logout, not per duty.

        Returns:
            DutyTransitionResult with status completed and the trip kilometers

        Raises:
            ValidationError: odometer-regression when closing <= opening, or a
                precondition failure
            SyncError: if the store fails
        """
        closing_km = _reading(close_odometer, 'Closing odometer')
        fuel_qty = _reading(fuel_quantity, 'Fuel quantity', required=False)
        fuel_amt = _reading(fuel_amount, 'Fuel amount', required=False)

        def operation(txn: Transaction):
            task = self._load_task(txn, task_id)
            self._check_preconditions(task, driver_id, TaskStatus.IN_PROGRESS)

            opening_km = float(task.opening_km or 0)
            if closing_km <= opening_km:
                raise ValidationError(
                    'odometer-regression',
                    f"Closing odometer {closing_km:g} km must be greater than the opening "
                    f"reading of {opening_km:g} km")

            user_data = txn.get(USERS, driver_id)
            if user_data is None:
                raise ValidationError('not-found', f"User profile for driver {driver_id} not found")
            record = DriverRecord.from_document(driver_id, txn.get(DRIVERS, driver_id) or {})
            target = self._target_state(record, COMPLETE, DriverOperationalState.AVAILABLE)

            kilometers = closing_km - opening_km

            txn.update(TASKS, task_id, {
                'status': TaskStatus.COMPLETED.value,
                'closingKm': closing_km,
                'fuelQuantity': fuel_qty,
                'fuelAmount': fuel_amt,
                'kilometers': kilometers,
                'completedAt': SERVER_TIMESTAMP,
            })
            driver_synced = TransactionHelper.companion_write(
                txn, f"complete {task_id} driver {driver_id}",
                lambda: self.driver_service.set_operational_state(
                    driver_id, target,
                    lifecycle_fields={
                        'lastTripEndKm': closing_km,
                        'totalKilometers': Increment(kilometers),
                    },
                    txn=txn))
            user_synced = TransactionHelper.companion_write(
                txn, f"complete {task_id} user {driver_id}",
                lambda: txn.update(USERS, driver_id, {'totalKms': Increment(kilometers)}))
            return kilometers, driver_synced and user_synced

        with self.driver_service.driver_lock(driver_id):
            kilometers, synced = self._run(operation)

        self.audit_service.log_action(
            action='complete_duty',
            entity_type='task',
            entity_id=task_id,
            details={
                'closing_km': closing_km,
                'kilometers': kilometers,
                'fuel_quantity': fuel_qty,
                'fuel_amount': fuel_amt,
                'driver_synced': synced
            },
            user_id=driver_id
        )
        logger.info(f"Duty completed: Task {task_id}, Driver {driver_id}, Distance {kilometers:g} km")
        return DutyTransitionResult(task_id, TaskStatus.COMPLETED, synced, kilometers=kilometers)

    def cancel_duty(self, task_id: str, cancelled_by: Optional[str] = None) -> DutyTransitionResult:
        """
        Delete an assigned (not yet started) duty and return its driver to Available.

        Raises:
            ValidationError: not-found, or invalid-state once the duty has started
            SyncError: if the store fails
        """
        def operation(txn: Transaction):
            task = self._load_task(txn, task_id)
            if task.status is not TaskStatus.ASSIGNED:
                raise ValidationError('invalid-state',
                                      f"Only assigned duties can be cancelled; {task_id} is {task.status.value}")

            driver_data = txn.get(DRIVERS, task.driver_id) if task.driver_id else None
            txn.delete(TASKS, task_id)
            if driver_data is None:
                return task.driver_id, True

            record = DriverRecord.from_document(task.driver_id, driver_data)
            target = self._target_state(record, CANCEL, DriverOperationalState.AVAILABLE)
            return task.driver_id, TransactionHelper.companion_write(
                txn, f"cancel {task_id} driver {task.driver_id}",
                lambda: self.driver_service.set_operational_state(task.driver_id, target, txn=txn))

        driver_id, driver_synced = self._run(operation)

        self.audit_service.log_action(
            action='cancel_duty',
            entity_type='task',
            entity_id=task_id,
            details={'driver_id': driver_id, 'driver_synced': driver_synced},
            user_id=cancelled_by
        )
        logger.info(f"Duty cancelled: Task {task_id}, Driver {driver_id} returned to available")
        return DutyTransitionResult(task_id, None, driver_synced)
