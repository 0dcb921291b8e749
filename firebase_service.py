"""
Firebase Service
Firestore document store backend and Firebase Auth ID-token verification
"""

import logging
import os
from functools import wraps
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore, initialize_app
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from document_store import (
    DocumentNotFound, DocumentStore, Increment, SERVER_TIMESTAMP, StoreError,
    Subscription, Transaction,
)

logger = logging.getLogger(__name__)


class FirebaseService:
    """Owns the firebase_admin app used for Firestore and Auth"""

    def __init__(self, credentials_path: Optional[str] = None):
        self.credentials_path = credentials_path or os.environ.get(
            'FIREBASE_CREDENTIALS', 'firebase-service-account.json')
        self._app = None
        self._initialized = False

    def initialize(self) -> bool:
        """Initialize Firebase Admin SDK"""
        if self._initialized:
            return True

        try:
            if firebase_admin._apps:
                self._app = firebase_admin.get_app()
            elif os.path.exists(self.credentials_path):
                cred = credentials.Certificate(self.credentials_path)
                self._app = initialize_app(cred)
                logger.info("Firebase Admin SDK initialized from service account key")
            elif os.environ.get('GOOGLE_APPLICATION_CREDENTIALS'):
                self._app = initialize_app()
                logger.info("Firebase Admin SDK initialized from application default credentials")
            else:
                logger.warning(f"Firebase service account key not found at {self.credentials_path}")
                return False

            self._initialized = True
            return True

        except (ValueError, IOError) as e:
            logger.error(f"Failed to initialize Firebase: {str(e)}")
            return False

    def firestore_client(self):
        if not self.initialize():
            raise StoreError("Firebase is not configured; cannot open Firestore")
        return firestore.client(app=self._app)

    def verify_id_token(self, id_token: str) -> Optional[Dict[str, Any]]:
        """
        Verify a Firebase Auth ID token issued to the mobile app.

        Returns:
            dict: decoded claims (uid, email, ...) or None when the token is rejected
        """
        if not self.initialize():
            logger.error("Firebase not initialized. Cannot verify ID token.")
            return None

        try:
            return auth.verify_id_token(id_token, app=self._app, check_revoked=True)
        except auth.ExpiredIdTokenError:
            logger.warning("Rejected expired Firebase ID token")
        except auth.RevokedIdTokenError:
            logger.warning("Rejected revoked Firebase ID token")
        except auth.InvalidIdTokenError as e:
            logger.warning(f"Rejected invalid Firebase ID token: {str(e)}")
        except auth.CertificateFetchError as e:
            logger.error(f"Could not fetch Firebase public keys: {str(e)}")
        return None


def _wrap_errors(func):
    """Translate google.api_core failures into StoreError"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except google_exceptions.NotFound as e:
            raise DocumentNotFound(str(e)) from e
        except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
            logger.error(f"Firestore call {func.__name__} failed: {str(e)}")
            raise StoreError(str(e)) from e
    return wrapper


def _to_firestore(data: Dict[str, Any]) -> Dict[str, Any]:
    converted = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            converted[key] = firestore.SERVER_TIMESTAMP
        elif isinstance(value, Increment):
            converted[key] = firestore.Increment(value.amount)
        else:
            converted[key] = value
    return converted


class _FirestoreTransaction(Transaction):

    def __init__(self, client, transaction):
        self._client = client
        self._transaction = transaction

    def _ref(self, collection, doc_id):
        return self._client.collection(collection).document(doc_id)

    def get(self, collection, doc_id):
        snapshot = self._ref(collection, doc_id).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, collection, doc_id, data, merge=False):
        self._transaction.set(self._ref(collection, doc_id), _to_firestore(data), merge=merge)

    def update(self, collection, doc_id, fields):
        self._transaction.update(self._ref(collection, doc_id), _to_firestore(fields))

    def delete(self, collection, doc_id):
        self._transaction.delete(self._ref(collection, doc_id))


class FirestoreDocumentStore(DocumentStore):
    """DocumentStore backed by Cloud Firestore"""

    supports_transactions = True

    def __init__(self, client):
        self._client = client

    def _ref(self, collection, doc_id):
        return self._client.collection(collection).document(doc_id)

    def _query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        query = self._client.collection(collection)
        for field_name, op, value in filters or ():
            query = query.where(filter=FieldFilter(field_name, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return query

    @_wrap_errors
    def get(self, collection, doc_id):
        snapshot = self._ref(collection, doc_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    @_wrap_errors
    def set(self, collection, doc_id, data, merge=False):
        self._ref(collection, doc_id).set(_to_firestore(data), merge=merge)

    @_wrap_errors
    def update(self, collection, doc_id, fields):
        self._ref(collection, doc_id).update(_to_firestore(fields))

    @_wrap_errors
    def delete(self, collection, doc_id):
        self._ref(collection, doc_id).delete()

    def new_document_id(self, collection):
        return self._client.collection(collection).document().id

    @_wrap_errors
    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        query = self._query(collection, filters, order_by, descending, limit)
        return [(snapshot.id, snapshot.to_dict()) for snapshot in query.stream()]

    @_wrap_errors
    def subscribe(self, collection, filters, on_change):
        def on_snapshot(snapshots, changes, read_time):
            on_change([(snapshot.id, snapshot.to_dict()) for snapshot in snapshots])

        watch = self._query(collection, filters).on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe)

    @_wrap_errors
    def run_transaction(self, operation):
        @firestore.transactional
        def run(transaction):
            return operation(_FirestoreTransaction(self._client, transaction))

        return run(self._client.transaction())

    def close(self):
        self._client.close()
