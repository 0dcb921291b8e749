"""
Transaction Helper Service

Runs multi-document operations against the document store:
- Inside a store transaction when the backend supports one
- As ordered direct writes otherwise (task first, then driver, then user)
- Store failures surface to callers as SyncError, never retried here
"""

from functools import wraps
from typing import Any, Callable
import logging

from document_store import DirectWriter, DocumentStore, StoreError, Transaction
from .exceptions import SyncError

logger = logging.getLogger(__name__)

class TransactionHelper:
    """Helper class for running store operations safely"""

    @staticmethod
    def with_sync_errors(func: Callable) -> Callable:
        """
        Decorator that converts StoreError raised by the wrapped call into SyncError.

        Usage:
            @TransactionHelper.with_sync_errors
            def set_operational_state(self, driver_id, state):
                ...
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except StoreError as e:
                logger.error(f"Store error in {func.__name__}: {str(e)}")
                raise SyncError(str(e)) from e
        return wrapper

    @staticmethod
    def run(store: DocumentStore, operation: Callable[[Transaction], Any],
            use_transaction: bool = True) -> Any:
        """
        Execute a multi-document operation.

        Args:
            store: Document store to run against
            operation: Callable receiving a Transaction; reads first, then writes
            use_transaction: Prefer a real transaction when the store has one

        Returns:
            Whatever the operation returns

        Raises:
            SyncError: if the store fails
        """
        try:
            if use_transaction and store.supports_transactions:
                return store.run_transaction(operation)
            return operation(DirectWriter(store))
        except StoreError as e:
            logger.error(f"Store operation failed: {str(e)}")
            raise SyncError(str(e)) from e

    @staticmethod
    def companion_write(txn: Transaction, description: str, write: Callable[[], None]) -> bool:
        """
        Apply a write that pairs with an earlier one in the same operation.

        Inside a real transaction a failure aborts everything, so the error
        propagates. With direct writes the earlier write has already landed; the
        failure is logged for the reconciliation pass and reported as False.
        """
        if txn.is_atomic:
            write()
            return True
        try:
            write()
            return True
        except StoreError as e:
            logger.error(f"Companion write failed after primary write ({description}); "
                         f"left for reconciliation: {str(e)}")
            return False
