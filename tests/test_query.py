"""Tests for statement and parameter preparation."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
import sqlalchemy as sa
from pydantic import BaseModel

from sqlwire import InvalidOperationError
from sqlwire.query import bind_names, bind_params, build_statement, params_for


@dataclass
class Filter:
    name: str
    age: int


class FilterModel(BaseModel):
    name: str
    age: int


class TestBindParams:
    """Tests for bind_params."""

    def test_none(self) -> None:
        assert bind_params(None) is None

    @pytest.mark.parametrize(
        "params",
        [{"name": "Alice", "age": 30}, Filter("Alice", 30), FilterModel(name="Alice", age=30)],
    )
    def test_single_object(self, params) -> None:
        assert bind_params(params) == {"name": "Alice", "age": 30}

    def test_many(self) -> None:
        bound = bind_params([Filter("Alice", 30), {"name": "Bob", "age": 25}], allow_many=True)
        assert bound == [{"name": "Alice", "age": 30}, {"name": "Bob", "age": 25}]

    def test_many_rejected_by_default(self) -> None:
        with pytest.raises(InvalidOperationError):
            bind_params([{"name": "Alice"}])

    def test_unsupported_object(self) -> None:
        with pytest.raises(InvalidOperationError):
            bind_params(42)

    def test_dataclass_type_rejected(self) -> None:
        with pytest.raises(InvalidOperationError):
            bind_params(Filter)


class TestBindNames:
    """Tests for bind_names and params_for."""

    def test_names_in_order(self) -> None:
        assert bind_names("select * from t where a = :a and b in :b_list") == ["a", "b_list"]

    def test_casts_and_escapes_are_not_names(self) -> None:
        assert bind_names("select x::text, '\\:literal' where y = :y") == ["y"]

    def test_params_for_narrows_mapping(self) -> None:
        params = {"a": 1, "b": 2, "c": 3}
        assert params_for("select :a, :c", params) == {"a": 1, "c": 3}

    def test_params_for_leaves_lists_alone(self) -> None:
        params = [{"a": 1}, {"a": 2}]
        assert params_for("insert into t values (:a)", params) is params

    def test_params_for_leaves_constructs_alone(self) -> None:
        params = {"a": 1}
        assert params_for(sa.select(sa.literal(1)), params) is params


class TestBuildStatement:
    """Tests for build_statement."""

    def test_text_is_wrapped(self) -> None:
        statement = build_statement("select 1")
        assert isinstance(statement, sa.TextClause)

    def test_construct_passes_through(self) -> None:
        select = sa.select(sa.literal(1))
        assert build_statement(select, {"a": 1}) is select

    def test_sequence_values_expand(self) -> None:
        statement = build_statement("select :ids, :name", {"ids": [1, 2], "name": "x"})
        assert statement._bindparams["ids"].expanding
        assert not statement._bindparams["name"].expanding

    def test_expanded_statement_runs(self) -> None:
        engine = sa.create_engine("sqlite://")
        sql = "select value from (select 1 as value union all select 2 union all select 3) where value in :ids"
        params = {"ids": (1, 3)}
        with engine.connect() as connection:
            values = connection.execute(build_statement(sql, params), params).scalars().all()
        engine.dispose()
        assert sorted(values) == [1, 3]
