"""
Database sessions

A session owns exactly one connection checked out of the engine returned
by the connection factory. It executes statements on that connection and
opens the child scopes (transactions and grid readers) bound to it.

Usage contract:
- one logical caller per session; sessions are not safe for concurrent use
- at most one open transaction and one open grid reader per session
- statements run outside an explicit transaction are committed as they go
- closing a session closes its open child scopes, then the connection
"""

import logging
import warnings
from contextlib import AsyncExitStack, ExitStack, asynccontextmanager, contextmanager
from functools import partial
from typing import Any, AsyncIterator, Callable, Iterator, List, Optional, Sequence, Set, TypeVar, Union

from sqlalchemy.engine import Connection, CursorResult, Engine, Row
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncResult

from . import result as _result
from .error import DisposedError, InvalidOperationError
from .grid_reader import AsyncGridReader, GridReader
from .options import DatabaseOptions
from .query import Params, Statement, bind_params, build_statement, params_for
from .transaction import AsyncTransaction, Transaction

T = TypeVar('T')

Batch = Union[Statement, Sequence[Statement]]


def _batch(statements: Batch) -> List[Statement]:
    if isinstance(statements, (list, tuple)):
        return list(statements)
    return [statements]


class _SessionCore:
    """State and bookkeeping shared by Session and AsyncSession"""

    _component = "Session"

    def __init__(self, options: DatabaseOptions, engine: Any):
        self._options = options
        self._logger: logging.Logger = options.logger_for(self._component)
        self._engine = engine
        self._connection: Any = None
        self._closed = False
        self._transaction: Any = None
        self._grid_reader: Any = None
        self._readers: Set[Any] = set()

    @property
    def closed(self) -> bool:
        """True once the session has been closed"""
        return self._closed

    @property
    def transaction_scope(self):
        """The open transaction started by this session, if any"""
        return self._transaction

    @property
    def grid_reader_scope(self):
        """The open grid reader started by this session, if any"""
        return self._grid_reader

    def _ensure_open(self):
        if self._closed:
            raise DisposedError(type(self).__name__)
        if self._connection is None:
            raise InvalidOperationError("the session is not connected")
        return self._connection

    def _ensure_can_open(self) -> None:
        if self._closed:
            raise DisposedError(type(self).__name__)
        if self._connection is not None:
            raise InvalidOperationError("the session is already connected")

    def _prepare(self, statement: Statement, params: Optional[Params], allow_many: bool = False):
        connection = self._ensure_open()
        bound = params_for(statement, bind_params(params, allow_many=allow_many))
        return connection, build_statement(statement, bound), bound

    def _claim_transaction(self) -> None:
        if self._transaction is not None:
            raise InvalidOperationError("a transaction is already open on this session")

    def _claim_grid_reader(self) -> None:
        if self._grid_reader is not None:
            raise InvalidOperationError("a grid reader is already open on this session")

    def _isolation_level(self, isolation_level: Optional[str]) -> Optional[str]:
        return isolation_level or self._options.isolation_level

    def _on_reader_disposed(self, reader: Any) -> None:
        self._readers.discard(reader)

    def _on_grid_reader_disposed(self) -> None:
        self._grid_reader = None

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open" if self._connection is not None else "new"
        return f"<{type(self).__name__} {state}>"

    def __del__(self, _warn=warnings.warn):
        if getattr(self, "_connection", None) is not None and not getattr(self, "_closed", True):
            _warn(f"unclosed database session {self!r}", ResourceWarning, source=self)


class RowReader:
    """
    Forward-only reader over the rows of one statement

    Iterating yields each row once. The underlying cursor is released when
    the rows are exhausted or when the reader is closed. An exhausted
    reader yields nothing; a closed reader raises DisposedError.

    Examples:
        >>> with session.execute_reader("select id from person order by id") as reader:
        ...     for row in reader:
        ...         print(row.id)
    """

    def __init__(
        self,
        result: CursorResult,
        as_type: Any = None,
        connection: Optional[Connection] = None,
        on_dispose: Optional[Callable[[Any], None]] = None,
    ):
        self._result: Optional[CursorResult] = result
        self._as_type = as_type
        # commits the statement's implicit transaction once released
        self._connection = connection
        self._on_dispose = on_dispose
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._result is None

    def __iter__(self) -> "RowReader":
        return self

    def __next__(self) -> Any:
        if self._closed:
            raise DisposedError(type(self).__name__)
        if self._result is None:
            raise StopIteration
        row = self._result.fetchone()
        if row is None:
            self._release()
            raise StopIteration
        return _result.materialize_row(row, self._as_type)

    def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        self._closed = True
        self._release()

    def _release(self) -> None:
        result, self._result = self._result, None
        if result is None:
            return
        callback, self._on_dispose = self._on_dispose, None
        try:
            result.close()
            connection, self._connection = self._connection, None
            if connection is not None and not connection.closed and connection.in_transaction():
                connection.commit()
        finally:
            if callback is not None:
                callback(self)

    def __enter__(self) -> "RowReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncRowReader:
    """
    Forward-only reader over the rows of one statement on an AsyncSession

    Rows are streamed with a server side cursor where the driver has one.

    Examples:
        >>> async with await session.execute_reader("select id from person") as reader:
        ...     async for row in reader:
        ...         print(row.id)
    """

    def __init__(
        self,
        result: AsyncResult,
        as_type: Any = None,
        connection: Optional[AsyncConnection] = None,
        on_dispose: Optional[Callable[[Any], None]] = None,
    ):
        self._result: Optional[AsyncResult] = result
        self._as_type = as_type
        self._connection = connection
        self._on_dispose = on_dispose
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._result is None

    def __aiter__(self) -> "AsyncRowReader":
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise DisposedError(type(self).__name__)
        if self._result is None:
            raise StopAsyncIteration
        row = await self._result.fetchone()
        if row is None:
            await self._release()
            raise StopAsyncIteration
        return _result.materialize_row(row, self._as_type)

    async def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        self._closed = True
        await self._release()

    async def _release(self) -> None:
        result, self._result = self._result, None
        if result is None:
            return
        callback, self._on_dispose = self._on_dispose, None
        try:
            await result.close()
            connection, self._connection = self._connection, None
            if connection is not None and not connection.closed and connection.in_transaction():
                await connection.commit()
        finally:
            if callback is not None:
                callback(self)

    async def __aenter__(self) -> "AsyncRowReader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class Session(_SessionCore):
    """
    Blocking database session

    Created by Database.connect(); use as a context manager or call
    close() when done.

    Examples:
        >>> with database.connect() as session:
        ...     session.execute("insert into person (name) values (:name)", {"name": "Alice"})
        ...     count = session.execute_scalar("select count(*) from person", as_type=int)
    """

    def __init__(self, options: DatabaseOptions, engine: Engine):
        super().__init__(options, engine)

    def open(self) -> None:
        """
        Check a connection out of the engine

        Raises:
            DisposedError: If the session was closed
            InvalidOperationError: If the session is already connected
        """
        self._ensure_can_open()
        self._connection = self._engine.connect()

    def close(self) -> None:
        """
        Close the session

        Open child scopes are closed first (an undecided transaction is
        rolled back), then the connection is returned to the engine.
        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is None:
            return

        self._logger.debug("Closing the database session...")
        with ExitStack() as stack:
            stack.callback(connection.close)
            if self._grid_reader is not None:
                stack.callback(self._grid_reader.close)
            if self._transaction is not None:
                stack.callback(self._transaction.close)
            for reader in list(self._readers):
                stack.callback(reader.close)
        self._logger.info("Database session closed successfully.")

    def _on_transaction_disposed(self, connection: Connection, isolation_level: Optional[str]) -> None:
        self._transaction = None
        self._restore_isolation_level(connection, isolation_level)

    def _restore_isolation_level(self, connection: Connection, isolation_level: Optional[str]) -> None:
        # a closed connection gets its level reset by the pool
        if isolation_level is not None and not connection.closed:
            connection.execution_options(isolation_level=isolation_level)

    def _run(self, operation: Callable[[Connection], T]) -> T:
        connection = self._ensure_open()
        if connection.in_transaction():
            return operation(connection)
        try:
            value = operation(connection)
        except BaseException:
            connection.rollback()
            raise
        connection.commit()
        return value

    def _fetch(self, statement: Statement, params: Optional[Params], limit: Optional[int] = None) -> Sequence[Row]:
        _, executable, bound = self._prepare(statement, params)

        def operation(connection: Connection) -> Sequence[Row]:
            result = connection.execute(executable, bound)
            try:
                return result.fetchmany(limit) if limit else result.all()
            finally:
                result.close()

        self._logger.debug("Executing database query...")
        rows = self._run(operation)
        self._logger.info("Database query executed successfully.")
        return rows

    def execute(self, statement: Statement, params: Optional[Params] = None) -> int:
        """
        Execute a statement and get the number of affected rows

        Args:
            statement: SQL text with ``:name`` parameters, or a SQLAlchemy construct
            params: Parameter mapping, pydantic model or dataclass; a
                sequence of those runs the statement once per item; an empty
                sequence runs nothing and returns 0

        Returns:
            Number of rows affected

        Raises:
            DisposedError: If the session was closed
        """
        _, executable, bound = self._prepare(statement, params, allow_many=True)
        if bound == []:
            return 0

        def operation(connection: Connection) -> int:
            result = connection.execute(executable, bound)
            try:
                return result.rowcount
            finally:
                result.close()

        self._logger.debug("Executing database statement...")
        count = self._run(operation)
        self._logger.info("Database statement executed successfully.")
        return count

    def execute_scalar(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        """
        Execute a statement and get the first column of the first row

        Args:
            statement: SQL text or a SQLAlchemy construct
            params: Parameter object
            as_type: Type to convert the value to, or None for the raw value

        Returns:
            The converted value, or None when no row was returned and
            ``as_type`` accepts None

        Raises:
            ConversionError: If the value cannot be converted to ``as_type``
        """
        _, executable, bound = self._prepare(statement, params)

        def operation(connection: Connection) -> Any:
            return connection.execute(executable, bound).scalar()

        self._logger.debug("Executing database scalar...")
        value = self._run(operation)
        self._logger.info("Database scalar executed successfully.")
        return _result.convert_value(value, as_type)

    def execute_reader(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> RowReader:
        """
        Execute a statement and get a forward-only reader over its rows

        The caller owns the reader and must close it (or exhaust it)
        before starting a transaction on this session.
        """
        connection, executable, bound = self._prepare(statement, params)
        owns_transaction = not connection.in_transaction()

        self._logger.debug("Executing database reader...")
        try:
            result = connection.execute(executable, bound)
        except BaseException:
            if owns_transaction:
                connection.rollback()
            raise
        reader = RowReader(
            result, as_type, connection if owns_transaction else None, self._on_reader_disposed
        )
        self._readers.add(reader)
        self._logger.info("Database reader executed successfully.")
        return reader

    def execute_grid_reader(self, statements: Batch, params: Optional[Params] = None) -> GridReader:
        """
        Execute a statement batch and get a reader over its result sets

        Args:
            statements: One statement or a sequence of statements run in
                order; each one returning rows leaves one result set
            params: Parameter object shared by every statement of the batch

        Returns:
            GridReader owned by the caller

        Raises:
            InvalidOperationError: If a grid reader is already open
        """
        self._ensure_open()
        self._claim_grid_reader()
        batch = _batch(statements)
        shared = bind_params(params)

        def operation(connection: Connection) -> List[Sequence[Row]]:
            result_sets = []
            for statement in batch:
                bound = params_for(statement, shared)
                result = connection.execute(build_statement(statement, bound), bound)
                try:
                    if result.returns_rows:
                        result_sets.append(result.all())
                finally:
                    result.close()
            return result_sets

        self._logger.debug("Executing database grid reader...")
        result_sets = self._run(operation)
        grid = GridReader(self._options, result_sets, self._on_grid_reader_disposed)
        self._grid_reader = grid
        self._logger.info("Database grid reader executed successfully.")
        return grid

    def query(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> List[Any]:
        """
        Execute a query and materialize every row

        Examples:
            >>> people = session.query("select name, age from person", as_type=Person)
        """
        return _result.materialize_rows(self._fetch(statement, params), as_type)

    def query_first(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        """Execute a query and get its first row; CardinalityError if empty"""
        return _result.first(self._fetch(statement, params, limit=1), as_type)

    def query_first_or_default(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None, default: Any = None) -> Any:
        """Execute a query and get its first row, or ``default`` if empty"""
        return _result.first_or_default(self._fetch(statement, params, limit=1), as_type, default)

    def query_single(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        """Execute a query and get its only row; CardinalityError otherwise"""
        return _result.single(self._fetch(statement, params, limit=2), as_type)

    def query_single_or_default(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None, default: Any = None) -> Any:
        """Execute a query and get its only row, or ``default`` if empty"""
        return _result.single_or_default(self._fetch(statement, params, limit=2), as_type, default)

    def begin_transaction(self, isolation_level: Optional[str] = None) -> Transaction:
        """
        Begin a transaction on this session's connection

        Args:
            isolation_level: Isolation level for this transaction; defaults
                to DatabaseOptions.isolation_level. The connection's previous
                level is restored when the transaction is closed

        Returns:
            Transaction owned by the caller; rolled back on close unless
            committed

        Raises:
            InvalidOperationError: If a transaction is already open
        """
        connection = self._ensure_open()
        self._claim_transaction()
        level = self._isolation_level(isolation_level)

        self._logger.debug("Starting a new database transaction...")
        previous = None
        if level is not None:
            previous = connection.get_isolation_level()
            connection.execution_options(isolation_level=level)
        try:
            driver_transaction = connection.begin()
        except BaseException:
            self._restore_isolation_level(connection, previous)
            raise
        transaction = Transaction(
            self._options,
            driver_transaction,
            partial(self._on_transaction_disposed, connection, previous),
        )
        self._transaction = transaction
        self._logger.info("Database transaction started successfully.")
        return transaction

    @contextmanager
    def transaction(self, isolation_level: Optional[str] = None) -> Iterator[Transaction]:
        """
        Scoped transaction; rolled back on exit unless committed

        Examples:
            >>> with session.transaction() as tx:
            ...     session.execute("delete from person")
            ...     tx.commit()
        """
        with self.begin_transaction(isolation_level) as transaction:
            yield transaction

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncSession(_SessionCore):
    """
    Awaitable database session

    Created by AsyncDatabase.connect(). Cancelling a task while it awaits
    a session operation raises asyncio.CancelledError in the caller;
    closing the session still releases the connection.

    Examples:
        >>> async with await database.connect() as session:
        ...     await session.execute("insert into person (name) values ('Alice')")
    """

    def __init__(self, options: DatabaseOptions, engine: AsyncEngine):
        super().__init__(options, engine)

    async def open(self) -> None:
        """
        Check a connection out of the engine

        Raises:
            DisposedError: If the session was closed
            InvalidOperationError: If the session is already connected
        """
        self._ensure_can_open()
        self._connection = await self._engine.connect()

    async def close(self) -> None:
        """
        Close the session

        Open child scopes are closed first, then the connection is
        returned to the engine. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is None:
            return

        self._logger.debug("Closing the database session...")
        async with AsyncExitStack() as stack:
            stack.push_async_callback(connection.close)
            if self._grid_reader is not None:
                stack.push_async_callback(self._grid_reader.close)
            if self._transaction is not None:
                stack.push_async_callback(self._transaction.close)
            for reader in list(self._readers):
                stack.push_async_callback(reader.close)
        self._logger.info("Database session closed successfully.")

    async def _on_transaction_disposed(self, connection: AsyncConnection, isolation_level: Optional[str]) -> None:
        self._transaction = None
        await self._restore_isolation_level(connection, isolation_level)

    async def _restore_isolation_level(self, connection: AsyncConnection, isolation_level: Optional[str]) -> None:
        if isolation_level is not None and not connection.closed:
            await connection.execution_options(isolation_level=isolation_level)

    async def _run(self, operation: Callable[[AsyncConnection], Any]) -> Any:
        connection = self._ensure_open()
        if connection.in_transaction():
            return await operation(connection)
        try:
            value = await operation(connection)
        except BaseException:
            await connection.rollback()
            raise
        await connection.commit()
        return value

    async def _fetch(self, statement: Statement, params: Optional[Params], limit: Optional[int] = None) -> Sequence[Row]:
        _, executable, bound = self._prepare(statement, params)

        async def operation(connection: AsyncConnection) -> Sequence[Row]:
            result = await connection.execute(executable, bound)
            try:
                return result.fetchmany(limit) if limit else result.all()
            finally:
                result.close()

        self._logger.debug("Executing database query...")
        rows = await self._run(operation)
        self._logger.info("Database query executed successfully.")
        return rows

    async def execute(self, statement: Statement, params: Optional[Params] = None) -> int:
        """Execute a statement and get the number of affected rows; see Session.execute"""
        _, executable, bound = self._prepare(statement, params, allow_many=True)
        if bound == []:
            return 0

        async def operation(connection: AsyncConnection) -> int:
            result = await connection.execute(executable, bound)
            try:
                return result.rowcount
            finally:
                result.close()

        self._logger.debug("Executing database statement...")
        count = await self._run(operation)
        self._logger.info("Database statement executed successfully.")
        return count

    async def execute_scalar(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        """Execute a statement and get the first column of the first row; see Session.execute_scalar"""
        _, executable, bound = self._prepare(statement, params)

        async def operation(connection: AsyncConnection) -> Any:
            return (await connection.execute(executable, bound)).scalar()

        self._logger.debug("Executing database scalar...")
        value = await self._run(operation)
        self._logger.info("Database scalar executed successfully.")
        return _result.convert_value(value, as_type)

    async def execute_reader(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> AsyncRowReader:
        """Execute a statement and get a forward-only streaming reader over its rows"""
        connection, executable, bound = self._prepare(statement, params)
        owns_transaction = not connection.in_transaction()

        self._logger.debug("Executing database reader...")
        try:
            result = await connection.stream(executable, bound)
        except BaseException:
            if owns_transaction:
                await connection.rollback()
            raise
        reader = AsyncRowReader(
            result, as_type, connection if owns_transaction else None, self._on_reader_disposed
        )
        self._readers.add(reader)
        self._logger.info("Database reader executed successfully.")
        return reader

    async def execute_grid_reader(self, statements: Batch, params: Optional[Params] = None) -> AsyncGridReader:
        """Execute a statement batch and get a reader over its result sets; see Session.execute_grid_reader"""
        self._ensure_open()
        self._claim_grid_reader()
        batch = _batch(statements)
        shared = bind_params(params)

        async def operation(connection: AsyncConnection) -> List[Sequence[Row]]:
            result_sets = []
            for statement in batch:
                bound = params_for(statement, shared)
                result = await connection.execute(build_statement(statement, bound), bound)
                try:
                    if result.returns_rows:
                        result_sets.append(result.all())
                finally:
                    result.close()
            return result_sets

        self._logger.debug("Executing database grid reader...")
        result_sets = await self._run(operation)
        grid = AsyncGridReader(self._options, result_sets, self._on_grid_reader_disposed)
        self._grid_reader = grid
        self._logger.info("Database grid reader executed successfully.")
        return grid

    async def query(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> List[Any]:
        """Execute a query and materialize every row"""
        return _result.materialize_rows(await self._fetch(statement, params), as_type)

    async def query_first(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        return _result.first(await self._fetch(statement, params, limit=1), as_type)

    async def query_first_or_default(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None, default: Any = None) -> Any:
        return _result.first_or_default(await self._fetch(statement, params, limit=1), as_type, default)

    async def query_single(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None) -> Any:
        return _result.single(await self._fetch(statement, params, limit=2), as_type)

    async def query_single_or_default(self, statement: Statement, params: Optional[Params] = None, as_type: Any = None, default: Any = None) -> Any:
        return _result.single_or_default(await self._fetch(statement, params, limit=2), as_type, default)

    async def begin_transaction(self, isolation_level: Optional[str] = None) -> AsyncTransaction:
        """Begin a transaction on this session's connection; see Session.begin_transaction"""
        connection = self._ensure_open()
        self._claim_transaction()
        level = self._isolation_level(isolation_level)

        self._logger.debug("Starting a new database transaction...")
        previous = None
        if level is not None:
            previous = await connection.get_isolation_level()
            await connection.execution_options(isolation_level=level)
        try:
            driver_transaction = await connection.begin()
        except BaseException:
            await self._restore_isolation_level(connection, previous)
            raise
        transaction = AsyncTransaction(
            self._options,
            driver_transaction,
            partial(self._on_transaction_disposed, connection, previous),
        )
        self._transaction = transaction
        self._logger.info("Database transaction started successfully.")
        return transaction

    @asynccontextmanager
    async def transaction(self, isolation_level: Optional[str] = None) -> AsyncIterator[AsyncTransaction]:
        """
        Scoped transaction; rolled back on exit unless committed

        Examples:
            >>> async with session.transaction() as tx:
            ...     await session.execute("delete from person")
            ...     await tx.commit()
        """
        async with await self.begin_transaction(isolation_level) as transaction:
            yield transaction

    async def __aenter__(self) -> "AsyncSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ['Session', 'AsyncSession', 'RowReader', 'AsyncRowReader']
