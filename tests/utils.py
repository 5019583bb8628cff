"""Shared statements and helpers for the sqlwire tests."""

from __future__ import annotations

import uuid

CREATE_TEST_TABLE = """
create table test_table (
    id integer primary key autoincrement,
    external_id text not null,
    name text not null
)
"""

INSERT_TEST_ROW = """
insert into test_table (external_id, name)
values (:external_id, :name)
"""

COUNT_TEST_ROWS = "select count(*) from test_table"

FOUR_VALUES = """
with test_data(value) as (
    select null union all
    select 1 union all
    select 2 union all
    select 3 union all
    select 4
)
select value
from test_data
where value is not null
order by value
"""


def new_row() -> dict:
    external_id = str(uuid.uuid4())
    return {"external_id": external_id, "name": f"Test {external_id}"}
