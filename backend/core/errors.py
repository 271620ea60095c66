"""
Exception hierarchy for the tabular engine.

Every engine failure derives from TableError so the HTTP layer can map
them in one place. Errors raised inside caller-supplied functions are
never wrapped.
"""

from __future__ import annotations


class TableError(Exception):
    """Base class for all engine errors."""


class FieldResolutionError(TableError, KeyError):
    """Raised when a field is not a column, calculation or measure of a table.

    Subclasses KeyError, so row views fail like mappings on ``row[name]``.
    ``row.get(name)`` falls back to its default only for names the table
    does not define; this error raised inside a calculation propagates.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class CalculationCycleError(TableError):
    """Raised when a calculation reads itself, directly or transitively.

    Not a KeyError; it propagates out of ``row.get`` like any error
    raised inside a calculation.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class CastError(TableError, ValueError):
    """Raised for an unknown cast type name."""


class CorrelationError(TableError, ValueError):
    """Raised when correlating series of different lengths."""


class GroupingError(TableError, TypeError):
    """Raised for malformed group keys, aggregates or pivot values."""


class JoinTypeError(TableError, ValueError):
    """Raised for a join type other than inner, left, right or outer."""


class AggregateError(TableError, ValueError):
    """Raised for an unknown named aggregate."""


class FetchError(TableError):
    """Raised when remote data cannot be turned into a table."""
