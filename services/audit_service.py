"""
Audit Service

Centralized audit logging for lifecycle and tracking actions. Records are
structured log entries on the `audit` logger so they reach the same handlers
(JSON in production) as the rest of the application logs.
"""

from typing import Optional, Dict, Any
import logging

from timezone_utils import get_ist_time_naive

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')

class AuditService:
    """Service class for centralized audit logging"""

    @staticmethod
    def log_action(action: str,
                   entity_type: Optional[str] = None,
                   entity_id: Optional[str] = None,
                   details: Optional[Dict[str, Any]] = None,
                   user_id: Optional[str] = None) -> bool:
        """
        Log an audit event.

        Args:
            action: Action performed (e.g., 'assign_duty', 'start_duty')
            entity_type: Type of entity affected (e.g., 'task', 'driver')
            entity_id: ID of the affected document
            details: Additional details about the action
            user_id: ID of user performing the action, None for system actions

        Returns:
            bool: True if logging successful, False otherwise
        """
        record = {
            'action': action,
            'entity_type': entity_type,
            'entity_id': entity_id,
            'user_id': user_id or 'system',
            'details': details or {},
            'logged_at': get_ist_time_naive().isoformat(),
        }
        try:
            audit_logger.info(f"AUDIT {action} {entity_type}/{entity_id}", extra={'audit': record})
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Error logging audit action '{action}': {str(e)}")
            return False
