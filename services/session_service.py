"""
Session Service

Explicit login sessions. A Session is created at login from the user's
profile document, handed to whoever acts on the user's behalf, and ended
at logout, which also takes a driver offline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
import logging

from document_store import DocumentStore, StoreError
from models import DRIVERS, USERS, LocationStatus, UserRecord, UserRole
from timezone_utils import utc_now
from utils.device_storage import StorageError
from .audit_service import AuditService
from .exceptions import AuthenticationError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


@dataclass
class Session:
    user_id: str
    role: UserRole
    name: str = ''
    email: str = ''
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    @property
    def is_driver(self) -> bool:
        return self.role is UserRole.DRIVER

    def claims(self) -> Dict[str, Any]:
        """Additional JWT claims carried by an access token for this session"""
        return {'role': self.role.value, 'name': self.name}

    @classmethod
    def from_claims(cls, user_id: str, claims: Dict[str, Any]) -> 'Session':
        try:
            role = UserRole(claims.get('role'))
        except ValueError:
            raise AuthenticationError('Token carries no valid role')
        return cls(user_id=user_id, role=role, name=claims.get('name', ''))


class SessionManager:
    """Creates and ends sessions"""

    def __init__(self, store: DocumentStore, location_service=None,
                 audit_service: Optional[AuditService] = None):
        self.store = store
        self.location_service = location_service
        self.audit_service = audit_service or AuditService()

    @TransactionHelper.with_sync_errors
    def login(self, user_id: str) -> Session:
        """
        Establish a session for an authenticated identity.

        Args:
            user_id: Authenticated user ID (Firebase uid)

        Returns:
            Session: with the role from users/{uid}

        Raises:
            AuthenticationError: no profile document, or no recognised role
            SyncError: if the store fails
        """
        if not user_id:
            raise AuthenticationError('No user identity supplied')

        data = self.store.get(USERS, user_id)
        if data is None:
            logger.warning(f"Login rejected, no profile for user {user_id}")
            raise AuthenticationError('No profile found for this account')

        user = UserRecord.from_document(user_id, data)
        if user.role is None:
            logger.warning(f"Login rejected, user {user_id} has no role")
            raise AuthenticationError('This account has no role assigned')

        session = Session(user_id=user_id, role=user.role, name=user.name, email=user.email)
        self.audit_service.log_action(
            action='login',
            entity_type='user',
            entity_id=user_id,
            details={'role': user.role.value},
            user_id=user_id
        )
        logger.info(f"User {user_id} logged in as {user.role.value}")
        return session

    def _stop_own_tracking(self, driver_id: str) -> None:
        """Stop location reporting only when this device reports for the driver logging out"""
        if self.location_service is None:
            return
        try:
            tracked = self.location_service.current_driver()
        except StorageError as e:
            logger.error(f"Could not read tracked driver at logout of {driver_id}: {str(e)}")
            return
        if tracked != driver_id:
            logger.info(f"Logout of driver {driver_id} leaves reporting for driver {tracked or '(none)'} running")
            return
        self.location_service.stop()

    def logout(self, session: Session) -> bool:
        """
        End a session. Drivers are marked offline and location reporting stops.

        Returns:
            bool: False when the offline write failed; the logout itself still completes
        """
        synced = True
        if session.is_driver:
            self._stop_own_tracking(session.user_id)
            try:
                self.store.set(DRIVERS, session.user_id,
                               {'locationstatus': LocationStatus.OFFLINE.value}, merge=True)
            except StoreError as e:
                logger.error(f"Could not mark driver {session.user_id} offline at logout: {str(e)}")
                synced = False

        self.audit_service.log_action(
            action='logout',
            entity_type='user',
            entity_id=session.user_id,
            user_id=session.user_id
        )
        logger.info(f"User {session.user_id} logged out")
        return synced
