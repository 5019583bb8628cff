"""
sqlwire - Lifecycle management for database sessions

This package sits between application code and a SQLAlchemy engine. It
governs acquisition, use and deterministic release of three resources:
connections (sessions), transactions and multi-result-set grid readers,
in a blocking and an awaitable flavour with the same behaviour.

Quick Start
-----------

```python
from sqlalchemy import create_engine
from sqlwire import Database, DatabaseOptions

engine = create_engine("sqlite:///app.db")
database = Database(DatabaseOptions(), lambda: engine)

with database.session() as session:
    session.execute("insert into person (name) values (:name)", {"name": "Alice"})

    # Use transactions
    with session.transaction() as tx:
        session.execute("delete from person where name = 'Bob'")
        tx.commit()

    # Read several result sets from one batch
    with session.execute_grid_reader([
        "select name from person",
        "select count(*) from person",
    ]) as grid:
        names = grid.read(str)
        total = grid.read_single(int)
```

Architecture
-----------

```
Your Application
       │
       ▼
┌─────────────────────────────────────────┐
│  sqlwire (this package)                 │
│  - Database / AsyncDatabase             │
│  - Session (one connection)             │
│  - Transaction (implicit rollback)      │
│  - GridReader (result set batches)      │
│  - result (typed materialization)       │
└─────────────────────────────────────────┘
       │
       ▼
┌─────────────────────────────────────────┐
│  SQLAlchemy Core                        │
│  - Engine / AsyncEngine (pooling)       │
│  - text() parameter binding             │
└─────────────────────────────────────────┘
       │
       ▼
┌─────────────────────────────────────────┐
│  DBAPI driver                           │
└─────────────────────────────────────────┘
```
"""

import logging

from .error import (
    SqlWireError,
    ConfigurationError,
    DisposedError,
    ConversionError,
    CardinalityError,
    InvalidOperationError,
)
from .options import DatabaseOptions, LOGGER_NAME
from .connection import (
    AsyncConnectionFactory,
    AsyncDatabase,
    AsyncNamedConnectionFactory,
    AsyncNamedDatabase,
    ConnectionFactory,
    Database,
    DatabaseName,
    NamedConnectionFactory,
    NamedDatabase,
)
from .session import AsyncRowReader, AsyncSession, RowReader, Session
from .transaction import AsyncTransaction, Transaction, TransactionState
from .grid_reader import AsyncGridReader, GridReader

logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "Database",
    "AsyncDatabase",
    "DatabaseName",
    "DatabaseOptions",
    "ConnectionFactory",
    "AsyncConnectionFactory",
    "NamedConnectionFactory",
    "AsyncNamedConnectionFactory",
    "NamedDatabase",
    "AsyncNamedDatabase",
    "Session",
    "AsyncSession",
    "RowReader",
    "AsyncRowReader",
    "Transaction",
    "AsyncTransaction",
    "TransactionState",
    "GridReader",
    "AsyncGridReader",
    "SqlWireError",
    "ConfigurationError",
    "DisposedError",
    "ConversionError",
    "CardinalityError",
    "InvalidOperationError",
]
