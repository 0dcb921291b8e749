"""
Durable key-value storage on the driver device.

Values survive process restarts, so the background location task can find
the signed-in driver and its own registration after a relaunch. Backed by a
small SQLAlchemy table (SQLite file by default).
"""

import json
import logging
import threading
from typing import Any, Optional

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from document_store import build_engine
from timezone_utils import utc_now

logger = logging.getLogger(__name__)

DRIVER_UID_KEY = 'driver_uid'


class StorageError(Exception):
    """Raised when the device storage cannot be read or written"""
    pass


class _Base(DeclarativeBase):
    pass

class StorageItem(_Base):
    __tablename__ = 'device_storage'

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f'<StorageItem {self.key}>'


class DeviceStorage:
    """Async-storage style string slots with JSON helpers"""

    def __init__(self, database_url: str = 'sqlite:///device_storage.db'):
        self.database_url = database_url
        self._engine = build_engine(database_url)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._lock = threading.RLock()
        try:
            _Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialise device storage: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        try:
            with self._lock, self._sessions() as session:
                item = session.get(StorageItem, key)
                return item.value if item else None
        except SQLAlchemyError as e:
            logger.error(f"Device storage read failed for '{key}': {str(e)}")
            raise StorageError(str(e)) from e

    def set_item(self, key: str, value: str) -> None:
        try:
            with self._lock, self._sessions() as session, session.begin():
                item = session.get(StorageItem, key)
                if item is None:
                    session.add(StorageItem(key=key, value=value))
                else:
                    item.value = value
                    item.updated_at = utc_now()
        except SQLAlchemyError as e:
            logger.error(f"Device storage write failed for '{key}': {str(e)}")
            raise StorageError(str(e)) from e

    def remove_item(self, key: str) -> None:
        try:
            with self._lock, self._sessions() as session, session.begin():
                item = session.get(StorageItem, key)
                if item is not None:
                    session.delete(item)
        except SQLAlchemyError as e:
            logger.error(f"Device storage delete failed for '{key}': {str(e)}")
            raise StorageError(str(e)) from e

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable device storage value for '{key}'")
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))

    def close(self):
        self._engine.dispose()
