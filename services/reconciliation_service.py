"""
Reconciliation Service

Repairs driver operational records left out of step with their tasks by a
partially failed lifecycle operation. Tasks are the source of truth:

- in-progress task  -> OnTrip
- assigned task     -> Assigned
- no open task      -> Available

and lastTripEndKm is raised to the latest completed closing reading.
Lost totalKilometers increments cannot be told apart from history and are
not repaired here.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import logging

from document_store import DocumentStore, Transaction
from models import DRIVERS, TASKS, USERS, DriverOperationalState, DriverRecord, TaskRecord, TaskStatus, UserRole
from .audit_service import AuditService
from .driver_service import DriverService
from .exceptions import SyncError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

STATE_FOR_TASK = {
    TaskStatus.IN_PROGRESS: DriverOperationalState.ON_TRIP,
    TaskStatus.ASSIGNED: DriverOperationalState.ASSIGNED,
}


@dataclass
class ReconciliationReport:
    checked: int = 0
    corrected: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'checked': self.checked,
            'corrected': self.corrected,
            'failed': self.failed,
        }


class ReconciliationService:
    """Service class for driver/task consistency repair"""

    def __init__(self, store: DocumentStore, driver_service: Optional[DriverService] = None,
                 audit_service: Optional[AuditService] = None, use_transactions: bool = True):
        self.store = store
        self.audit_service = audit_service or AuditService()
        self.driver_service = driver_service or DriverService(store, self.audit_service)
        self.use_transactions = use_transactions

    @staticmethod
    def expected_state(tasks: List[TaskRecord]) -> DriverOperationalState:
        """Driver state implied by a driver's tasks"""
        for status in (TaskStatus.IN_PROGRESS, TaskStatus.ASSIGNED):
            if any(task.status is status for task in tasks):
                return STATE_FOR_TASK[status]
        return DriverOperationalState.AVAILABLE

    @staticmethod
    def expected_last_trip_end(tasks: List[TaskRecord]) -> Optional[float]:
        readings = [float(task.closing_km) for task in tasks
                    if task.status is TaskStatus.COMPLETED and task.closing_km is not None]
        return max(readings) if readings else None

    def _driver_ids(self) -> List[str]:
        ids = {doc_id for doc_id, _ in self.store.query(DRIVERS)}
        ids.update(doc_id for doc_id, _ in self.store.query(USERS, [('role', '==', UserRole.DRIVER.value)]))
        return sorted(ids)

    def _load_tasks(self, driver_id: str) -> List[TaskRecord]:
        tasks = []
        for doc_id, data in self.store.query(TASKS, [('driverId', '==', driver_id)]):
            try:
                tasks.append(TaskRecord.from_document(doc_id, data))
            except ValueError:
                logger.warning(f"Reconciliation skipping task {doc_id} with unknown status")
        return tasks

    def reconcile_driver(self, driver_id: str) -> Optional[Dict[str, Any]]:
        """
        Bring one driver record in line with its tasks.

        Returns:
            dict describing the correction, or None when the record was consistent

        Raises:
            SyncError: if the store fails
        """
        with self.driver_service.driver_lock(driver_id):
            tasks = TransactionHelper.with_sync_errors(self._load_tasks)(driver_id)
            target = self.expected_state(tasks)
            last_end = self.expected_last_trip_end(tasks)

            def operation(txn: Transaction):
                data = txn.get(DRIVERS, driver_id)
                record = DriverRecord.from_document(driver_id, data or {})
                try:
                    current = record.operational_state
                except ValueError:
                    current = None

                lifecycle = {}
                if last_end is not None and record.last_trip_end_km < last_end:
                    lifecycle['lastTripEndKm'] = last_end
                if data is not None and current is target and not lifecycle:
                    return None

                self.driver_service.set_operational_state(driver_id, target, lifecycle or None, txn=txn)
                return {
                    'driver_id': driver_id,
                    'from': current.name if current else f"({record.active!r}, {record.active_status!r})",
                    'to': target.name,
                    'lastTripEndKm': lifecycle.get('lastTripEndKm'),
                }

            return TransactionHelper.run(self.store, operation, self.use_transactions)

    def reconcile(self) -> ReconciliationReport:
        """Check every driver; failures are reported per driver and do not stop the pass"""
        report = ReconciliationReport()
        driver_ids = TransactionHelper.with_sync_errors(self._driver_ids)()

        for driver_id in driver_ids:
            report.checked += 1
            try:
                correction = self.reconcile_driver(driver_id)
            except SyncError as e:
                logger.error(f"Reconciliation failed for driver {driver_id}: {str(e)}")
                report.failed.append(driver_id)
                continue
            if correction:
                report.corrected.append(correction)
                logger.warning(f"Reconciled driver {driver_id}: {correction['from']} -> {correction['to']}")

        self.audit_service.log_action(
            action='reconcile',
            entity_type='driver',
            details=report.to_dict()
        )
        logger.info(f"Reconciliation complete: {report.checked} checked, "
                    f"{len(report.corrected)} corrected, {len(report.failed)} failed")
        return report
