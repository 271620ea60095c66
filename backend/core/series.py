"""
UnivariateSeries: one extracted column with univariate statistics.

Missing values (None, NaN, pd.NA) are kept in the series but ignored by
every statistic. Zero is a value, not a missing marker.

Statistics that need data return None when there is none: mean, min,
max, median, percentile and mode on an empty ``values()``; variance and
std with fewer than two values; corr with fewer than two complete pairs
or a zero standard deviation. ``sum()`` of nothing is 0. sum, mean,
variance, std and corr over non-numeric values return None.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional

import numpy as np
import pandas as pd

from . import config
from .errors import CorrelationError
from .models import ColumnSummary
from .utils import freeze_key, is_missing, is_number, round_half_up, to_native

_DTYPE_NAMES = {
    "integer": "integer",
    "floating": "float",
    "mixed-integer-float": "float",
    "decimal": "float",
    "string": "string",
    "boolean": "boolean",
    "datetime": "datetime",
    "datetime64": "datetime",
    "date": "datetime",
    "empty": "empty",
}


class UnivariateSeries:
    """An immutable sequence of values from a single column."""

    __slots__ = ("_values",)

    def __init__(self, values: Iterable[Any] = ()) -> None:
        self._values = tuple(to_native(v) for v in values)

    # -- sequence protocol ---------------------------------------------------

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __getitem__(self, index: int) -> Any:
        return self._values[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, UnivariateSeries):
            return self._values == other._values
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        preview = ", ".join(repr(v) for v in self._values[:10])
        more = ", ..." if len(self._values) > 10 else ""
        return f"UnivariateSeries([{preview}{more}])"

    def to_list(self) -> List[Any]:
        return list(self._values)

    def to_numpy(self) -> np.ndarray:
        return np.asarray(self._values, dtype=object)

    # -- shape ---------------------------------------------------------------

    def count(self) -> int:
        """Number of items, missing values included."""
        return len(self._values)

    def values(self) -> "UnivariateSeries":
        """Non-missing values, duplicates kept."""
        return UnivariateSeries(v for v in self._values if not is_missing(v))

    def unique(self) -> "UnivariateSeries":
        """Distinct non-missing values in first-seen order."""
        seen: Dict[Hashable, Any] = {}
        for v in self._values:
            if is_missing(v):
                continue
            seen.setdefault(freeze_key(v), v)
        return UnivariateSeries(seen.values())

    distinct = unique

    def type(self) -> str:
        """Human-friendly type name of the non-missing values."""
        present = [v for v in self._values if not is_missing(v)]
        inferred = pd.api.types.infer_dtype(present, skipna=True)
        return _DTYPE_NAMES.get(inferred, "object")

    def is_numeric(self) -> bool:
        present = self.values()._values
        return bool(present) and all(is_number(v) for v in present)

    # -- aggregates ----------------------------------------------------------

    def _present(self) -> List[Any]:
        return [v for v in self._values if not is_missing(v)]

    def _numbers(self) -> Optional[List[Any]]:
        """Present values, or None if any of them is not a number."""
        present = self._present()
        if not all(is_number(v) for v in present):
            return None
        return present

    def sum(self) -> Any:
        numbers = self._numbers()
        return None if numbers is None else sum(numbers, 0)

    def min(self) -> Any:
        present = self._present()
        return min(present) if present else None

    def max(self) -> Any:
        present = self._present()
        return max(present) if present else None

    def mean(self) -> Optional[float]:
        numbers = self._numbers()
        if not numbers:
            return None
        return sum(numbers, 0) / len(numbers)

    def percentile(self, percentile: float) -> Any:
        """Value at *percentile* (0-100) of the sorted non-missing values.

        Index is ``(n - 1) * percentile / 100`` rounded half-up.
        """
        if not 0 <= percentile <= 100:
            raise ValueError(f"percentile must be between 0 and 100, got {percentile}")
        ordered = sorted(self._present())
        if not ordered:
            return None
        pos = round_half_up((len(ordered) - 1) * (percentile / 100))
        return ordered[min(pos, len(ordered) - 1)]

    def median(self) -> Any:
        return self.percentile(50)

    def mode(self) -> Optional[List[Any]]:
        """Most frequent value(s), ties in first-seen order.

        Returns None for an empty series, or when more than
        ``config.MODE_MAX_TIES`` values tie.
        """
        counts: Dict[Hashable, int] = {}
        first: Dict[Hashable, Any] = {}
        for v in self._present():
            key = freeze_key(v)
            counts[key] = counts.get(key, 0) + 1
            first.setdefault(key, v)
        if not counts:
            return None
        highest = max(counts.values())
        result = [first[k] for k, n in counts.items() if n == highest]
        if len(result) > config.MODE_MAX_TIES:
            return None
        return result

    def variance(self) -> Optional[float]:
        """Sample variance (divisor n - 1)."""
        numbers = self._numbers()
        if numbers is None or len(numbers) < 2:
            return None
        return float(np.var(np.asarray(numbers, dtype=float), ddof=1))

    var = variance

    def std(self) -> Optional[float]:
        variance = self.variance()
        return None if variance is None else math.sqrt(variance)

    def corr(self, other: "UnivariateSeries") -> Optional[float]:
        """Pearson correlation from standardized-score products.

        Both series must have the same length; positions where either
        value is missing are skipped.
        """
        if not isinstance(other, UnivariateSeries):
            other = UnivariateSeries(other)
        if self.count() != other.count():
            raise CorrelationError(
                "Cannot compute correlation. Both series must have the same row count "
                f"({self.count()} != {other.count()})."
            )

        x_mean, x_std = self.mean(), self.std()
        y_mean, y_std = other.mean(), other.std()
        if not x_std or not y_std:
            return None

        numerator = 0.0
        pairs = 0
        for x, y in zip(self._values, other._values):
            if is_missing(x) or is_missing(y):
                continue
            numerator += ((x - x_mean) / x_std) * ((y - y_mean) / y_std)
            pairs += 1
        if pairs < 2:
            return None
        return round(numerator / (pairs - 1), config.CORR_DECIMALS)

    # -- describe ------------------------------------------------------------

    def summary(self, name: str) -> ColumnSummary:
        """Descriptive statistics row for ``Table.describe``."""
        values = self.values()
        count = self.count()
        summary = ColumnSummary(
            name=name,
            type=self.type(),
            count=count,
            distinct=self.unique().count(),
            fill=(values.count() / count) if count else None,
            mode=values.mode(),
        )
        if values.is_numeric():
            summary.mean = values.mean()
            summary.min = values.min()
            summary.q1 = values.percentile(25)
            summary.median = values.percentile(50)
            summary.q3 = values.percentile(75)
            summary.max = values.max()
        return summary
