"""
Grid readers over the result sets of one statement batch

The batch runs once when the reader is opened; every row-returning
statement leaves one pending result set. Each read consumes the next
pending set in order. Nothing advances on its own.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Sequence

from sqlalchemy.engine import Row

from . import result as _result
from .error import DisposedError, InvalidOperationError
from .options import DatabaseOptions


class _GridReaderCore:
    """Pending result sets shared by the blocking and awaitable readers"""

    _component = "GridReader"

    def __init__(
        self,
        options: DatabaseOptions,
        result_sets: Sequence[Sequence[Row]],
        on_dispose: Optional[Callable[[], None]] = None,
    ):
        self._logger: logging.Logger = options.logger_for(self._component)
        self._pending: Optional[Deque[Sequence[Row]]] = deque(result_sets)
        self._on_dispose = on_dispose

    @property
    def closed(self) -> bool:
        """True once the reader has been released"""
        return self._pending is None

    @property
    def remaining(self) -> int:
        """Number of result sets not read yet"""
        self._ensure_open()
        return len(self._pending)

    def _ensure_open(self) -> Deque[Sequence[Row]]:
        if self._pending is None:
            raise DisposedError(type(self).__name__)
        return self._pending

    def _next_set(self) -> Sequence[Row]:
        pending = self._ensure_open()
        if not pending:
            raise InvalidOperationError("no more result sets to read")
        return pending.popleft()

    def _release(self) -> None:
        if self._pending is None:
            return
        self._logger.debug("Closing the database grid reader...")
        self._pending.clear()
        self._pending = None
        callback, self._on_dispose = self._on_dispose, None
        if callback is not None:
            callback()
        self._logger.info("Database grid reader closed successfully.")

    # Reads are plain functions over the pending sets; the awaitable
    # reader wraps the same calls.

    def _read(self, as_type: Any = None) -> List[Any]:
        return _result.materialize_rows(self._next_set(), as_type)

    def _read_first(self, as_type: Any = None) -> Any:
        return _result.first(self._next_set(), as_type)

    def _read_first_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        return _result.first_or_default(self._next_set(), as_type, default)

    def _read_single(self, as_type: Any = None) -> Any:
        return _result.single(self._next_set(), as_type)

    def _read_single_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        return _result.single_or_default(self._next_set(), as_type, default)


class GridReader(_GridReaderCore):
    """
    Reader for a grid of results from one statement batch

    Examples:
        >>> with session.execute_grid_reader([
        ...     "select id, name from person",
        ...     "select count(*) from person",
        ... ]) as grid:
        ...     people = grid.read(Person)
        ...     total = grid.read_single(int)
    """

    def read(self, as_type: Any = None) -> List[Any]:
        """
        Read the next result set

        Args:
            as_type: Type to materialize every row into, or None for rows

        Returns:
            List of materialized rows

        Raises:
            DisposedError: If the reader was closed
            InvalidOperationError: If every result set was already read
            ConversionError: If a row cannot be converted
        """
        return self._read(as_type)

    def read_first(self, as_type: Any = None) -> Any:
        """
        Read the first row of the next result set

        Raises:
            CardinalityError: If the result set is empty
        """
        return self._read_first(as_type)

    def read_first_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        """Read the first row of the next result set, or ``default`` if empty"""
        return self._read_first_or_default(as_type, default)

    def read_single(self, as_type: Any = None) -> Any:
        """
        Read the only row of the next result set

        Raises:
            CardinalityError: If the result set does not have exactly one row
        """
        return self._read_single(as_type)

    def read_single_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        """
        Read the only row of the next result set, or ``default`` if empty

        Raises:
            CardinalityError: If the result set has more than one row
        """
        return self._read_single_or_default(as_type, default)

    def close(self) -> None:
        """Release the pending result sets. Safe to call more than once."""
        self._release()

    def __enter__(self) -> "GridReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncGridReader(_GridReaderCore):
    """
    Reader for a grid of results from one statement batch on an AsyncSession

    Examples:
        >>> async with await session.execute_grid_reader([
        ...     "select id, name from person",
        ...     "select count(*) from person",
        ... ]) as grid:
        ...     people = await grid.read(Person)
        ...     total = await grid.read_single(int)
    """

    async def read(self, as_type: Any = None) -> List[Any]:
        """Read the next result set; see GridReader.read"""
        return self._read(as_type)

    async def read_first(self, as_type: Any = None) -> Any:
        """Read the first row of the next result set"""
        return self._read_first(as_type)

    async def read_first_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        """Read the first row of the next result set, or ``default`` if empty"""
        return self._read_first_or_default(as_type, default)

    async def read_single(self, as_type: Any = None) -> Any:
        """Read the only row of the next result set"""
        return self._read_single(as_type)

    async def read_single_or_default(self, as_type: Any = None, default: Any = None) -> Any:
        """Read the only row of the next result set, or ``default`` if empty"""
        return self._read_single_or_default(as_type, default)

    async def close(self) -> None:
        """Release the pending result sets. Safe to call more than once."""
        self._release()

    async def __aenter__(self) -> "AsyncGridReader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ['GridReader', 'AsyncGridReader']
