"""
Transaction scopes

A transaction is a child scope of a session. It wraps the SQLAlchemy
transaction begun on the session's connection:

- Explicit commit() required to persist changes
- A transaction closed without a decision is rolled back
- Can be used as a context manager for automatic cleanup

Once committed, rolled back or closed, every further commit() or
rollback() raises DisposedError; closing again is a no-op.
"""

import enum
import logging
from typing import Any, Callable, Optional, Union

from sqlalchemy.engine.base import RootTransaction
from sqlalchemy.ext.asyncio import AsyncTransaction as _AsyncDriverTransaction

from .error import DisposedError
from .options import DatabaseOptions

DisposeCallback = Optional[Callable[[], Any]]


class TransactionState(str, enum.Enum):
    """Lifecycle states of a transaction scope"""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISPOSED_IMPLICIT_ROLLBACK = "disposed_implicit_rollback"


class _TransactionCore:
    """State shared by the blocking and the awaitable transaction"""

    _component = "Transaction"

    def __init__(
        self,
        options: DatabaseOptions,
        transaction: Union[RootTransaction, _AsyncDriverTransaction],
        on_dispose: DisposeCallback = None,
    ):
        self._logger: logging.Logger = options.logger_for(self._component)
        self._transaction = transaction
        self._on_dispose = on_dispose
        self._state = TransactionState.ACTIVE

    @property
    def state(self) -> TransactionState:
        """The current lifecycle state"""
        return self._state

    @property
    def is_active(self) -> bool:
        """True until the transaction is committed, rolled back or closed"""
        return self._state is TransactionState.ACTIVE and self._transaction is not None

    @property
    def closed(self) -> bool:
        """True once the driver transaction has been released"""
        return self._transaction is None

    def _ensure_active(self):
        if not self.is_active:
            raise DisposedError(type(self).__name__)
        return self._transaction

    def _detach(self) -> DisposeCallback:
        self._transaction = None
        callback, self._on_dispose = self._on_dispose, None
        return callback

    def _release(self) -> None:
        callback = self._detach()
        if callback is not None:
            callback()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} state={self._state.value}>"


class Transaction(_TransactionCore):
    """
    Represents an active database transaction

    Examples:
        >>> with session.begin_transaction() as tx:
        ...     session.execute("insert into person (name) values (:name)", {"name": "Alice"})
        ...     tx.commit()  # Changes are persisted
        >>>
        >>> with session.begin_transaction() as tx:
        ...     session.execute("insert into person (name) values ('Bob')")
        ...     # Automatically rolled back on context exit
    """

    def commit(self) -> None:
        """
        Commit the transaction

        Raises:
            DisposedError: If the transaction is no longer active
        """
        transaction = self._ensure_active()
        self._logger.debug("Committing the database transaction...")
        transaction.commit()
        self._state = TransactionState.COMMITTED
        self._logger.info("Database transaction committed successfully.")

    def rollback(self) -> None:
        """
        Rollback the transaction

        Raises:
            DisposedError: If the transaction is no longer active
        """
        transaction = self._ensure_active()
        self._logger.debug("Rolling back the database transaction...")
        transaction.rollback()
        self._state = TransactionState.ROLLED_BACK
        self._logger.info("Database transaction rolled back successfully.")

    def close(self) -> None:
        """
        Release the transaction, rolling it back if still undecided

        Safe to call more than once. The owning session is notified once.
        """
        transaction = self._transaction
        if transaction is None:
            return
        try:
            if self._state is TransactionState.ACTIVE:
                self._logger.debug("Rolling back the undecided database transaction...")
                transaction.rollback()
                self._state = TransactionState.DISPOSED_IMPLICIT_ROLLBACK
                self._logger.info("Database transaction rolled back on dispose.")
            transaction.close()
        finally:
            self._release()

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncTransaction(_TransactionCore):
    """
    Represents an active database transaction on an AsyncSession

    Examples:
        >>> async with session.transaction() as tx:
        ...     await session.execute("insert into person (name) values ('Alice')")
        ...     await tx.commit()
    """

    async def commit(self) -> None:
        """
        Commit the transaction

        Raises:
            DisposedError: If the transaction is no longer active
        """
        transaction = self._ensure_active()
        self._logger.debug("Committing the database transaction...")
        await transaction.commit()
        self._state = TransactionState.COMMITTED
        self._logger.info("Database transaction committed successfully.")

    async def rollback(self) -> None:
        """
        Rollback the transaction

        Raises:
            DisposedError: If the transaction is no longer active
        """
        transaction = self._ensure_active()
        self._logger.debug("Rolling back the database transaction...")
        await transaction.rollback()
        self._state = TransactionState.ROLLED_BACK
        self._logger.info("Database transaction rolled back successfully.")

    async def close(self) -> None:
        """
        Release the transaction, rolling it back if still undecided

        Safe to call more than once. The owning session is notified once,
        also when the close itself is cancelled.
        """
        transaction = self._transaction
        if transaction is None:
            return
        try:
            if self._state is TransactionState.ACTIVE:
                self._logger.debug("Rolling back the undecided database transaction...")
                await transaction.rollback()
                self._state = TransactionState.DISPOSED_IMPLICIT_ROLLBACK
                self._logger.info("Database transaction rolled back on dispose.")
            await transaction.close()
        finally:
            callback = self._detach()
            if callback is not None:
                await callback()

    async def __aenter__(self) -> "AsyncTransaction":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ['Transaction', 'AsyncTransaction', 'TransactionState']
