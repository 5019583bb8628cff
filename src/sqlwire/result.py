'''
Result materialization and typed conversion

Rows come back from SQLAlchemy as ``Row`` objects. When the caller asks
for a type, the row is validated into it with a pydantic ``TypeAdapter``:

- record types (pydantic models, dataclasses, TypedDicts, dicts) are built
  from the row mapping, column name to field name
- tuple types (``tuple[int, str]``, NamedTuples) are built from the row
  values in column order
- anything else is treated as a scalar and built from the first column
'''

import dataclasses
from functools import lru_cache
from typing import Any, Iterable, List, Mapping, Optional, Sequence, TypeVar, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.engine import Row

from .error import CardinalityError, ConversionError

T = TypeVar('T')


@lru_cache(maxsize=256)
def _adapter(target_type: Any) -> TypeAdapter:
    return TypeAdapter(target_type)


def _get_adapter(target_type: Any) -> TypeAdapter:
    try:
        return _adapter(target_type)
    except TypeError:
        # unhashable type forms are not cached
        return TypeAdapter(target_type)


def _origin(target_type: Any) -> Any:
    return get_origin(target_type) or target_type


def is_record_type(target_type: Any) -> bool:
    '''
    Check if rows should be materialized into the type by column name
    '''
    origin = _origin(target_type)
    if not isinstance(origin, type):
        return False
    return (
        issubclass(origin, (BaseModel, Mapping))
        or dataclasses.is_dataclass(origin)
    )


def is_tuple_type(target_type: Any) -> bool:
    '''
    Check if rows should be materialized into the type by column position
    '''
    origin = _origin(target_type)
    return isinstance(origin, type) and issubclass(origin, tuple)


def convert_value(value: Any, target_type: Any) -> Any:
    '''
    Coerce a value to the target type

    Args:
        value: The raw value returned by the driver
        target_type: The requested type, or None to keep the raw value

    Returns:
        The converted value

    Raises:
        ConversionError: If the value cannot be coerced
    '''
    if target_type is None:
        return value
    try:
        return _get_adapter(target_type).validate_python(value)
    except ValidationError as e:
        name = getattr(target_type, '__name__', repr(target_type))
        raise ConversionError(
            f"cannot convert {value!r} to {name}: {e.error_count()} validation error(s)"
        ) from e


def materialize_row(row: Row, target_type: Any = None) -> Any:
    '''
    Materialize a single row as the target type

    Args:
        row: Row returned by SQLAlchemy
        target_type: The requested shape, or None to return the row as is

    Returns:
        The materialized row

    Raises:
        ConversionError: If the row cannot be converted

    Examples:
        >>> @dataclass
        ... class Person:
        ...     name: str
        ...     age: int
        >>> materialize_row(row, Person)
        Person(name='Alice', age=30)
        >>> materialize_row(row, str)
        'Alice'
    '''
    if target_type is None:
        return row
    if is_record_type(target_type):
        payload: Any = dict(row._mapping)
    elif is_tuple_type(target_type):
        payload = tuple(row)
    else:
        payload = row[0]
    return convert_value(payload, target_type)


def materialize_rows(rows: Iterable[Row], target_type: Any = None) -> List[Any]:
    '''
    Materialize every row as the target type
    '''
    return [materialize_row(row, target_type) for row in rows]


def first(rows: Sequence[Row], target_type: Any = None) -> Any:
    '''
    Get the first row; fails when there are no rows

    Raises:
        CardinalityError: If there are no rows
    '''
    if not rows:
        raise CardinalityError.no_rows()
    return materialize_row(rows[0], target_type)


def first_or_default(rows: Sequence[Row], target_type: Any = None, default: Optional[T] = None) -> Any:
    '''
    Get the first row, or ``default`` when there are no rows
    '''
    if not rows:
        return default
    return materialize_row(rows[0], target_type)


def single(rows: Sequence[Row], target_type: Any = None) -> Any:
    '''
    Get the only row; fails unless there is exactly one

    Raises:
        CardinalityError: If there are zero or more than one rows
    '''
    if not rows:
        raise CardinalityError.no_rows()
    if len(rows) > 1:
        raise CardinalityError.more_than_one_row()
    return materialize_row(rows[0], target_type)


def single_or_default(rows: Sequence[Row], target_type: Any = None, default: Optional[T] = None) -> Any:
    '''
    Get the only row, or ``default`` when there are no rows

    Raises:
        CardinalityError: If there is more than one row
    '''
    if not rows:
        return default
    if len(rows) > 1:
        raise CardinalityError.more_than_one_row()
    return materialize_row(rows[0], target_type)


__all__ = [
    'convert_value',
    'materialize_row',
    'materialize_rows',
    'first',
    'first_or_default',
    'single',
    'single_or_default',
    'is_record_type',
    'is_tuple_type',
]
