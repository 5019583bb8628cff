"""
Error types for sqlwire

Failures raised by the underlying driver (``sqlalchemy.exc.*``) are never
wrapped or reclassified; they propagate unchanged. Cancellation of a
suspendable operation surfaces as ``asyncio.CancelledError``.
"""

from typing import Optional


class SqlWireError(Exception):
    """
    Base exception for all sqlwire errors.
    """
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(SqlWireError):
    """A required construction argument was missing or invalid"""
    def __init__(self, argument: str, message: Optional[str] = None):
        self.argument = argument
        super().__init__(
            f"Configuration error: {message or f'{argument!r} is required'}"
        )


class DisposedError(SqlWireError):
    """An operation was attempted on a released resource"""
    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Cannot access a disposed object: {resource}")


class ConversionError(SqlWireError):
    """A scalar or row value could not be coerced to the requested type"""
    def __init__(self, message: str):
        super().__init__(f"Conversion error: {message}")


class CardinalityError(SqlWireError):
    """A first/single read received an unexpected number of rows"""
    def __init__(self, message: str):
        super().__init__(f"Cardinality error: {message}")

    @classmethod
    def no_rows(cls) -> "CardinalityError":
        return cls("sequence contains no elements")

    @classmethod
    def more_than_one_row(cls) -> "CardinalityError":
        return cls("sequence contains more than one element")


class InvalidOperationError(SqlWireError):
    """The operation is not valid for the current state of the object"""
    def __init__(self, message: str):
        super().__init__(f"Invalid operation: {message}")


__all__ = [
    'SqlWireError',
    'ConfigurationError',
    'DisposedError',
    'ConversionError',
    'CardinalityError',
    'InvalidOperationError',
]
