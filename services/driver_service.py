"""
Driver Service

Owns the status fields of the driver operational record (drivers/{id}):
the three valid (active, activeStatus) pairings, the transitions driven by
duty lifecycle events, and driver provisioning. Position fields belong to the
location reporter and are never written from here.
"""

from collections import defaultdict
from typing import Optional, Dict, Any
import logging
import threading

from document_store import DocumentStore, Transaction
from models import (DRIVERS, USERS, LIFECYCLE_FIELDS, POSITION_FIELDS, DriverOperationalState,
                    DriverRecord, LocationStatus, UserRecord, UserRole)
from .audit_service import AuditService
from .exceptions import InvalidDriverState, ValidationError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

# Lifecycle events emitted by the duty controller
ASSIGN = 'assign'
START = 'start'
COMPLETE = 'complete'
CANCEL = 'cancel'

TRANSITIONS = {
    (ASSIGN, DriverOperationalState.AVAILABLE): DriverOperationalState.ASSIGNED,
    (START, DriverOperationalState.ASSIGNED): DriverOperationalState.ON_TRIP,
    (COMPLETE, DriverOperationalState.ON_TRIP): DriverOperationalState.AVAILABLE,
    (CANCEL, DriverOperationalState.ASSIGNED): DriverOperationalState.AVAILABLE,
}

class DriverService:
    """Service class for the driver state machine"""

    def __init__(self, store: DocumentStore, audit_service: Optional[AuditService] = None):
        self.store = store
        self.audit_service = audit_service or AuditService()
        # One lock per driver id ever seen; grows with the fleet roster, never with duty volume
        self._locks = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def driver_lock(self, driver_id: str) -> threading.RLock:
        """Per-driver lock; lifecycle operations on one driver run one at a time"""
        with self._locks_guard:
            return self._locks[driver_id]

    @TransactionHelper.with_sync_errors
    def get_driver(self, driver_id: str, txn: Optional[Transaction] = None) -> Optional[DriverRecord]:
        reader = txn or self.store
        data = reader.get(DRIVERS, driver_id)
        if data is None:
            return None
        return DriverRecord.from_document(driver_id, data)

    @staticmethod
    def current_state(record: DriverRecord) -> DriverOperationalState:
        try:
            return record.operational_state
        except ValueError as e:
            raise InvalidDriverState(f"Driver {record.id}: {str(e)}") from e

    @staticmethod
    def next_state(current: DriverOperationalState, event: str) -> DriverOperationalState:
        """Look up the target state for a lifecycle event"""
        target = TRANSITIONS.get((event, current))
        if target is None:
            raise InvalidDriverState(f"Event '{event}' is not allowed while driver is {current.name}")
        return target

    def set_operational_state(self, driver_id: str, target_state: DriverOperationalState,
                              lifecycle_fields: Optional[Dict[str, Any]] = None,
                              txn: Optional[Transaction] = None) -> None:
        """
        Merge-write the driver's (active, activeStatus) pairing.

        Args:
            driver_id: Driver document ID
            target_state: One of the three valid states
            lifecycle_fields: lastTripEndKm / totalKilometers written with the state
            txn: Transaction to write through; direct store write when omitted

        Raises:
            InvalidDriverState: if the target is not a valid state or a field
                outside the lifecycle-owned set is supplied
            SyncError: if a direct write fails
        """
        if not isinstance(target_state, DriverOperationalState):
            raise InvalidDriverState(f"Not a driver state: {target_state!r}")

        extra = dict(lifecycle_fields or {})
        foreign = set(extra) - LIFECYCLE_FIELDS
        if foreign & POSITION_FIELDS:
            raise InvalidDriverState(f"Position fields are owned by the location reporter: {sorted(foreign)}")
        if foreign:
            raise InvalidDriverState(f"Fields not owned by the lifecycle controller: {sorted(foreign)}")

        payload = dict(target_state.fields)
        payload.update(extra)

        if txn is not None:
            txn.set(DRIVERS, driver_id, payload, merge=True)
        else:
            with self.driver_lock(driver_id):
                self._merge_driver(driver_id, payload)

        logger.debug(f"Driver {driver_id} -> {target_state.name}")

    @TransactionHelper.with_sync_errors
    def _merge_driver(self, driver_id: str, payload: Dict[str, Any]) -> None:
        self.store.set(DRIVERS, driver_id, payload, merge=True)

    @TransactionHelper.with_sync_errors
    def provision_driver(self, user_id: str, name: str, email: str = '', phone: str = '') -> DriverRecord:
        """
        Create the user profile and the operational record for a new driver.

        Existing documents are merged into, so re-running provisioning never
        resets odometer history.
        """
        if not user_id or not name:
            raise ValidationError('missing-field', 'Driver id and name are required')

        existing = self.store.get(DRIVERS, user_id)
        self.store.set(USERS, user_id, {
            'role': UserRole.DRIVER.value,
            'name': name,
            'email': email,
            'phone': phone,
        }, merge=True)

        driver_fields = {'name': name}
        if existing is None:
            driver_fields.update(DriverOperationalState.AVAILABLE.fields)
            driver_fields.update({
                'lastTripEndKm': 0,
                'totalKilometers': 0,
                'locationstatus': LocationStatus.OFFLINE.value,
            })
        self.store.set(DRIVERS, user_id, driver_fields, merge=True)

        user = self.store.get(USERS, user_id)
        if 'totalKms' not in user:
            self.store.set(USERS, user_id, {'totalKms': 0}, merge=True)

        self.audit_service.log_action(
            action='provision_driver',
            entity_type='driver',
            entity_id=user_id,
            details={'name': name, 'new_record': existing is None}
        )
        logger.info(f"Driver {name} (ID: {user_id}) provisioned")
        return DriverRecord.from_document(user_id, self.store.get(DRIVERS, user_id))

    @TransactionHelper.with_sync_errors
    def provision_admin(self, user_id: str, name: str, email: str = '', phone: str = '') -> None:
        if not user_id or not name:
            raise ValidationError('missing-field', 'Admin id and name are required')

        self.store.set(USERS, user_id, {
            'role': UserRole.ADMIN.value,
            'name': name,
            'email': email,
            'phone': phone,
        }, merge=True)

        self.audit_service.log_action(
            action='provision_admin',
            entity_type='user',
            entity_id=user_id,
            details={'name': name}
        )
        logger.info(f"Admin {name} (ID: {user_id}) provisioned")

    @TransactionHelper.with_sync_errors
    def get_profile(self, user_id: str) -> Dict[str, Any]:
        """A driver's own profile: contact details plus odometer totals"""
        data = self.store.get(USERS, user_id)
        if data is None:
            raise ValidationError('not-found', f"Driver {user_id} not found")
        profile = UserRecord.from_document(user_id, data).to_dict()

        driver_data = self.store.get(DRIVERS, user_id)
        record = DriverRecord.from_document(user_id, driver_data) if driver_data is not None else None
        profile.update({
            'activeStatus': record.active_status if record else None,
            'lastTripEndKm': record.last_trip_end_km if record else 0,
            'totalKilometers': record.total_kilometers if record else 0,
        })
        return profile

    @TransactionHelper.with_sync_errors
    def update_profile(self, user_id: str, name: str, phone: str = '') -> Dict[str, Any]:
        """
        Edit a driver's display name and phone number.

        The name is mirrored onto drivers/{id} so dispatch views stay in step;
        status, odometer and position fields are left alone.
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('missing-field', 'Name is required')
        if self.store.get(USERS, user_id) is None:
            raise ValidationError('not-found', f"Driver {user_id} not found")

        self.store.set(USERS, user_id, {'name': name, 'phone': phone or ''}, merge=True)
        if self.store.get(DRIVERS, user_id) is not None:
            self.store.set(DRIVERS, user_id, {'name': name}, merge=True)

        self.audit_service.log_action(
            action='update_profile',
            entity_type='user',
            entity_id=user_id,
            details={'name': name, 'phone': phone or ''},
            user_id=user_id
        )
        logger.info(f"Driver {user_id} updated profile")
        return self.get_profile(user_id)
