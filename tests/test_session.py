"""Tests for the blocking Session."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest
import sqlalchemy as sa
from pydantic import BaseModel

from sqlwire import (
    CardinalityError,
    ConversionError,
    Database,
    DisposedError,
    InvalidOperationError,
    RowReader,
    Session,
)
from tests.utils import COUNT_TEST_ROWS, FOUR_VALUES, INSERT_TEST_ROW, new_row


@dataclass
class NewRow:
    external_id: str
    name: str


class StoredRow(BaseModel):
    id: int
    external_id: str
    name: str


@pytest.fixture
def session(database: Database):
    with database.session() as session:
        yield session


class TestExecute:
    """Tests for Session.execute."""

    def test_execute_no_params_creates_row(self, session: Session) -> None:
        row = new_row()
        result = session.execute(
            f"insert into test_table (external_id, name) "
            f"values ('{row['external_id']}', '{row['name']}')"
        )
        assert result == 1

    def test_execute_with_params_creates_row(self, session: Session) -> None:
        assert session.execute(INSERT_TEST_ROW, new_row()) == 1

    def test_execute_with_dataclass_params(self, session: Session) -> None:
        assert session.execute(INSERT_TEST_ROW, NewRow(**new_row())) == 1

    def test_execute_many(self, session: Session) -> None:
        session.execute(INSERT_TEST_ROW, [new_row(), new_row(), new_row()])
        assert session.execute_scalar(COUNT_TEST_ROWS, as_type=int) == 3

    def test_execute_is_visible_to_new_session(self, database: Database, session: Session) -> None:
        session.execute(INSERT_TEST_ROW, new_row())
        with database.session() as other:
            assert other.execute_scalar(COUNT_TEST_ROWS, as_type=int) == 1

    def test_execute_sqlalchemy_construct(self, session: Session) -> None:
        table = sa.table("test_table", sa.column("external_id"), sa.column("name"))
        assert session.execute(sa.insert(table).values(**new_row())) == 1

    def test_driver_error_propagates_unchanged(self, session: Session) -> None:
        with pytest.raises(sa.exc.OperationalError):
            session.execute("insert into missing_table (id) values (1)")
        # the failed statement left nothing behind on the connection
        assert session.execute(INSERT_TEST_ROW, new_row()) == 1

    def test_failure_logs_start_only(self, session: Session, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="sqlwire")
        with pytest.raises(sa.exc.OperationalError):
            session.execute("insert into missing_table (id) values (1)")

        messages = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert (logging.DEBUG, "Executing database statement...") in messages
        assert (logging.INFO, "Database statement executed successfully.") not in messages

    def test_execute_empty_sequence_runs_nothing(self, session: Session) -> None:
        assert session.execute(INSERT_TEST_ROW, []) == 0
        assert session.execute_scalar(COUNT_TEST_ROWS, as_type=int) == 0

    def test_sequence_params_rejected_for_queries(self, session: Session) -> None:
        with pytest.raises(InvalidOperationError):
            session.query("select * from test_table", [new_row()])


class TestExecuteScalar:
    """Tests for Session.execute_scalar."""

    def test_scalar_after_insert(self, session: Session) -> None:
        session.execute(INSERT_TEST_ROW, new_row())
        result = session.execute_scalar("select last_insert_rowid()", as_type=int)
        assert result > 0

    def test_scalar_converts_text(self, session: Session) -> None:
        assert session.execute_scalar("select '42'", as_type=int) == 42

    def test_scalar_raw_value(self, session: Session) -> None:
        assert session.execute_scalar("select 'abc'") == "abc"

    def test_scalar_conversion_error(self, session: Session) -> None:
        with pytest.raises(ConversionError):
            session.execute_scalar("select 'abc'", as_type=int)

    def test_scalar_no_rows(self, session: Session) -> None:
        assert session.execute_scalar("select id from test_table") is None


class TestExecuteReader:
    """Tests for Session.execute_reader."""

    def test_reader_yields_rows_in_order(self, session: Session) -> None:
        with session.execute_reader(FOUR_VALUES) as reader:
            assert isinstance(reader, RowReader)
            entries = [row[0] for row in reader]
        assert entries == [1, 2, 3, 4]

    def test_reader_with_params(self, session: Session) -> None:
        statement = FOUR_VALUES.replace(
            "where value is not null", "where value in :values"
        )
        with session.execute_reader(statement, {"values": [2, 4]}, as_type=int) as reader:
            assert list(reader) == [2, 4]

    def test_reader_is_forward_only(self, session: Session) -> None:
        reader = session.execute_reader(FOUR_VALUES, as_type=int)
        assert list(reader) == [1, 2, 3, 4]
        assert reader.closed
        assert list(reader) == []

    def test_closed_reader_raises(self, session: Session) -> None:
        reader = session.execute_reader(FOUR_VALUES)
        next(reader)
        reader.close()
        reader.close()
        with pytest.raises(DisposedError):
            next(reader)

    def test_transaction_after_exhausted_reader(self, session: Session) -> None:
        list(session.execute_reader(FOUR_VALUES))
        with session.transaction() as tx:
            session.execute(INSERT_TEST_ROW, new_row())
            tx.commit()
        assert session.execute_scalar(COUNT_TEST_ROWS, as_type=int) == 1


class TestQuery:
    """Tests for the query family."""

    @pytest.fixture(autouse=True)
    def rows(self, session: Session) -> None:
        session.execute(INSERT_TEST_ROW, [new_row(), new_row()])

    def test_query_into_model(self, session: Session) -> None:
        rows = session.query("select * from test_table order by id", as_type=StoredRow)
        assert [row.id for row in rows] == [1, 2]
        assert all(row.name.startswith("Test ") for row in rows)

    def test_query_first(self, session: Session) -> None:
        assert session.query_first("select id from test_table order by id", as_type=int) == 1

    def test_query_first_empty(self, session: Session) -> None:
        with pytest.raises(CardinalityError):
            session.query_first("select id from test_table where id < 0")
        assert session.query_first_or_default("select id from test_table where id < 0") is None

    def test_query_single(self, session: Session) -> None:
        assert session.query_single(
            "select id from test_table where id = :id", {"id": 2}, as_type=int
        ) == 2
        with pytest.raises(CardinalityError):
            session.query_single("select id from test_table")

    def test_query_single_or_default(self, session: Session) -> None:
        assert session.query_single_or_default(
            "select id from test_table where id < 0", default=-1
        ) == -1
        with pytest.raises(CardinalityError):
            session.query_single_or_default("select id from test_table")


class TestDisposal:
    """Operations on a closed session fail with DisposedError."""

    @pytest.mark.parametrize(
        "operation",
        [
            lambda s: s.execute(INSERT_TEST_ROW, new_row()),
            lambda s: s.execute_scalar(COUNT_TEST_ROWS),
            lambda s: s.execute_reader(FOUR_VALUES),
            lambda s: s.execute_grid_reader([FOUR_VALUES]),
            lambda s: s.query(FOUR_VALUES),
            lambda s: s.begin_transaction(),
        ],
    )
    def test_operation_after_close(self, database: Database, operation) -> None:
        session = database.connect()
        session.close()
        with pytest.raises(DisposedError):
            operation(session)

    def test_close_twice(self, database: Database, engine) -> None:
        session = database.connect()
        session.close()
        session.close()
        assert session.closed
        assert engine.pool.checkedout() == 0

    def test_close_cascades_to_children(self, database: Database, engine) -> None:
        session = database.connect()
        transaction = session.begin_transaction()
        session.execute(INSERT_TEST_ROW, new_row())
        grid = session.execute_grid_reader([FOUR_VALUES])
        reader = session.execute_reader(FOUR_VALUES)
        next(reader)

        session.close()

        assert transaction.closed
        assert grid.closed
        assert reader.closed
        with pytest.raises(DisposedError):
            next(reader)
        assert engine.pool.checkedout() == 0
        with database.session() as other:
            assert other.execute_scalar(COUNT_TEST_ROWS, as_type=int) == 0

    def test_close_releases_open_reader(self, database: Database, engine) -> None:
        session = database.connect()
        reader = session.execute_reader(FOUR_VALUES, as_type=int)
        assert next(reader) == 1

        session.close()

        assert engine.pool.checkedout() == 0
        with pytest.raises(DisposedError):
            list(reader)

    def test_exhausted_reader_is_forgotten(self, session: Session) -> None:
        reader = session.execute_reader(FOUR_VALUES)
        list(reader)
        session.close()
        assert list(reader) == []

    def test_open_twice(self, session: Session) -> None:
        with pytest.raises(InvalidOperationError):
            session.open()
