"""
Service Layer Architecture

Business logic for DutySync, kept out of the route handlers and CLIs so it can
be exercised directly in tests. Services provide:

1. **Transactions**: Multi-document writes run atomically where the store allows
2. **Business Rules**: Odometer, ownership and state checks in one place
3. **Error Handling**: ValidationError / SyncError instead of HTTP concerns

Services Architecture:
- **DriverService**: Driver state machine and provisioning
- **DutyService**: Assign, start, complete and cancel duties
- **LocationReportingService**: Background position reporting
- **ReportingService**: Dashboards, duty records, reports, live positions
- **ReconciliationService**: Repairs driver records from their tasks
- **SessionManager**: Login and logout
- **AuditService**: Centralized audit logging
"""

from .audit_service import AuditService
from .driver_service import DriverService
from .duty_service import DutyService, DutyTransitionResult
from .location_service import LocationReportingService
from .reporting_service import ReportingService
from .reconciliation_service import ReconciliationService
from .session_service import Session, SessionManager
from .transaction_helper import TransactionHelper

__all__ = [
    'AuditService',
    'DriverService',
    'DutyService',
    'DutyTransitionResult',
    'LocationReportingService',
    'ReportingService',
    'ReconciliationService',
    'Session',
    'SessionManager',
    'TransactionHelper'
]
