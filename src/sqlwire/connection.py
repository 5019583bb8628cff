"""
Database entry points and connection factories

This module provides the main entry points for working with sqlwire.

A connection factory is a zero-argument callable returning the SQLAlchemy
engine that connections for one logical database are checked out of.
Pooling stays with the engine; a Database only hands out sessions, each
owning one connection at a time.
"""

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Callable, Generic, Iterator, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from .error import ConfigurationError
from .options import DatabaseOptions
from .session import AsyncSession, Session

ConnectionFactory = Callable[[], Engine]
AsyncConnectionFactory = Callable[[], AsyncEngine]


class DatabaseName:
    """
    Marker base class for a logical database identity

    Subclass it once per logical database and use the subclass as the type
    parameter of the named factories and databases, so a consumer asking
    for ``NamedDatabase[OrdersDb]`` cannot be handed the audit database.

    Examples:
        >>> class OrdersDb(DatabaseName): ...
        >>> factory = NamedConnectionFactory[OrdersDb](lambda: orders_engine)
        >>> orders = NamedDatabase[OrdersDb](DatabaseOptions(), factory)
    """


TName = TypeVar('TName', bound=DatabaseName)


class _DatabaseCore:
    _component = "Database"

    def __init__(self, options: DatabaseOptions, connection_factory: Callable):
        if options is None:
            raise ConfigurationError("options")
        if connection_factory is None:
            raise ConfigurationError("connection_factory")
        if not callable(connection_factory):
            raise ConfigurationError(
                "connection_factory", "'connection_factory' must be callable"
            )
        self._options = options
        self._connection_factory = connection_factory
        self._logger: logging.Logger = options.logger_for(self._component)

    @property
    def options(self) -> DatabaseOptions:
        """The options shared by every session of this database"""
        return self._options


class Database(_DatabaseCore):
    """
    Factory of blocking database sessions

    Examples:
        >>> engine = create_engine("sqlite:///app.db")
        >>> database = Database(DatabaseOptions(), lambda: engine)
        >>> with database.session() as session:
        ...     session.execute("delete from person")
    """

    def __init__(self, options: DatabaseOptions, connection_factory: ConnectionFactory):
        super().__init__(options, connection_factory)

    def connect(self) -> Session:
        """
        Open a new session

        Returns:
            Connected Session, owned by the caller

        Raises:
            sqlalchemy.exc.DBAPIError: If the connection cannot be opened;
                the half-built session is closed first
        """
        self._logger.debug("Starting a new database session...")
        session = Session(self._options, self._connection_factory())
        try:
            session.open()
        except BaseException:
            session.close()
            raise
        self._logger.info("Database session started successfully.")
        return session

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session closed when the block exits"""
        session = self.connect()
        try:
            yield session
        finally:
            session.close()


class AsyncDatabase(_DatabaseCore):
    """
    Factory of awaitable database sessions

    Examples:
        >>> engine = create_async_engine("sqlite+aiosqlite:///app.db")
        >>> database = AsyncDatabase(DatabaseOptions(), lambda: engine)
        >>> async with database.session() as session:
        ...     await session.execute("delete from person")
    """

    def __init__(self, options: DatabaseOptions, connection_factory: AsyncConnectionFactory):
        super().__init__(options, connection_factory)

    async def connect(self) -> AsyncSession:
        """
        Open a new session

        If the calling task is cancelled while connecting, the half-built
        session is closed before asyncio.CancelledError propagates.

        Returns:
            Connected AsyncSession, owned by the caller

        Raises:
            sqlalchemy.exc.DBAPIError: If the connection cannot be opened
        """
        self._logger.debug("Starting a new database session...")
        session = AsyncSession(self._options, self._connection_factory())
        try:
            await session.open()
        except BaseException:
            await session.close()
            raise
        self._logger.info("Database session started successfully.")
        return session

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session closed when the block exits"""
        session = await self.connect()
        try:
            yield session
        finally:
            await session.close()


class NamedConnectionFactory(Generic[TName]):
    """Connection factory bound to the logical database ``TName``"""

    def __init__(self, factory: ConnectionFactory):
        if factory is None or not callable(factory):
            raise ConfigurationError("factory", "'factory' must be callable")
        self._factory = factory

    def __call__(self) -> Engine:
        return self._factory()


class AsyncNamedConnectionFactory(Generic[TName]):
    """Async connection factory bound to the logical database ``TName``"""

    def __init__(self, factory: AsyncConnectionFactory):
        if factory is None or not callable(factory):
            raise ConfigurationError("factory", "'factory' must be callable")
        self._factory = factory

    def __call__(self) -> AsyncEngine:
        return self._factory()


class NamedDatabase(Database, Generic[TName]):
    """Database bound to the logical database ``TName``"""

    def __init__(self, options: DatabaseOptions, connection_factory: NamedConnectionFactory[TName]):
        if connection_factory is not None and not isinstance(connection_factory, NamedConnectionFactory):
            raise ConfigurationError(
                "connection_factory",
                "'connection_factory' must be a NamedConnectionFactory",
            )
        super().__init__(options, connection_factory)


class AsyncNamedDatabase(AsyncDatabase, Generic[TName]):
    """AsyncDatabase bound to the logical database ``TName``"""

    def __init__(self, options: DatabaseOptions, connection_factory: AsyncNamedConnectionFactory[TName]):
        if connection_factory is not None and not isinstance(connection_factory, AsyncNamedConnectionFactory):
            raise ConfigurationError(
                "connection_factory",
                "'connection_factory' must be an AsyncNamedConnectionFactory",
            )
        super().__init__(options, connection_factory)


__all__ = [
    'ConnectionFactory',
    'AsyncConnectionFactory',
    'Database',
    'AsyncDatabase',
    'DatabaseName',
    'NamedConnectionFactory',
    'AsyncNamedConnectionFactory',
    'NamedDatabase',
    'AsyncNamedDatabase',
]
