'''
Statement and parameter preparation

Turns the statement text and the caller's parameter object into what
SQLAlchemy executes. Parameter values are bound by name (``:name``); list,
tuple and set values are expanded so ``where id in :ids`` works without
building the placeholder list by hand.
'''

import dataclasses
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from sqlalchemy import bindparam, text
from sqlalchemy.sql.base import Executable
from sqlalchemy.sql.elements import TextClause

from .error import InvalidOperationError

Statement = Union[str, Executable]
Params = Union[Mapping[str, Any], BaseModel, Any]
BoundParams = Union[Dict[str, Any], List[Dict[str, Any]], None]

# same rule sqlalchemy's text() uses to find bind names
_BIND_NAME = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")

_EXPANDABLE = (list, tuple, set, frozenset)


def _to_mapping(params: Any) -> Dict[str, Any]:
    if isinstance(params, BaseModel):
        return params.model_dump()
    if dataclasses.is_dataclass(params) and not isinstance(params, type):
        return dataclasses.asdict(params)
    if isinstance(params, Mapping):
        return dict(params)
    raise InvalidOperationError(
        f"unsupported parameter object of type {type(params).__name__}"
    )


def bind_params(params: Optional[Params], allow_many: bool = False) -> BoundParams:
    '''
    Normalize a parameter object into SQLAlchemy execution parameters

    Args:
        params: A mapping, pydantic model or dataclass instance; when
            ``allow_many`` is set, also a sequence of those
        allow_many: Accept a sequence of parameter objects (executemany)

    Returns:
        A dict, a list of dicts, or None when no parameters were given

    Raises:
        InvalidOperationError: If the parameter object is not supported
    '''
    if params is None:
        return None
    if isinstance(params, Sequence) and not isinstance(params, (str, bytes)):
        if not allow_many:
            raise InvalidOperationError(
                "a sequence of parameter objects is only valid for execute()"
            )
        return [_to_mapping(item) for item in params]
    return _to_mapping(params)


def bind_names(statement: str) -> List[str]:
    '''
    Get the names of the ``:name`` parameters referenced by a statement
    '''
    return _BIND_NAME.findall(statement)


def params_for(statement: Statement, params: BoundParams) -> BoundParams:
    '''
    Narrow a shared parameter mapping to the names a text statement uses

    Lets one parameter object serve every statement of a batch.
    '''
    if not isinstance(statement, str) or not isinstance(params, dict):
        return params
    names = set(bind_names(statement))
    return {name: value for name, value in params.items() if name in names}


def build_statement(statement: Statement, params: BoundParams = None) -> Executable:
    '''
    Build the executable for a statement

    Plain strings become ``text()`` constructs. Any parameter holding a
    list, tuple or set is declared as an expanding bind parameter.
    SQLAlchemy constructs (``select()``, ``insert()``, ...) pass through.

    Args:
        statement: SQL text or a SQLAlchemy executable
        params: Parameters already normalized by ``bind_params``

    Returns:
        An executable SQLAlchemy construct
    '''
    if not isinstance(statement, str):
        return statement

    clause: TextClause = text(statement)
    if isinstance(params, dict):
        names = set(bind_names(statement))
        expanding = [
            bindparam(name, expanding=True)
            for name, value in params.items()
            if name in names and isinstance(value, _EXPANDABLE)
        ]
        if expanding:
            clause = clause.bindparams(*expanding)
    return clause


__all__ = ['Statement', 'Params', 'bind_params', 'bind_names', 'params_for', 'build_statement']
