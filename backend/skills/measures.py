"""
Named aggregate measures.

Builds measure functions from an aggregate name and a field so callers
without Python closures (the HTTP API) can define measures.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from core.errors import AggregateError
from core.series import UnivariateSeries

_SERIES_AGGREGATES: Dict[str, Callable[[UnivariateSeries], Any]] = {
    "sum": lambda s: s.sum(),
    "mean": lambda s: s.mean(),
    "median": lambda s: s.median(),
    "min": lambda s: s.min(),
    "max": lambda s: s.max(),
    "std": lambda s: s.std(),
    "variance": lambda s: s.variance(),
    "distinct": lambda s: s.unique().count(),
}

AGGREGATES = ("count",) + tuple(_SERIES_AGGREGATES)


def aggregate_measure(aggregate: str, field: Optional[str] = None) -> Callable:
    """Measure function computing *aggregate* over *field* for each group.

    ``count`` without a field counts rows; with a field it counts the
    field's non-missing values. Every other aggregate needs a field.
    """
    agg = (aggregate or "").lower()
    if agg == "count":
        if field is None:
            return lambda group: group.count()
        return lambda group: group.list(field).values().count()

    fn = _SERIES_AGGREGATES.get(agg)
    if fn is None:
        raise AggregateError(
            f"Unknown aggregate '{aggregate}'. Expected one of: {', '.join(AGGREGATES)}."
        )
    if not field:
        raise AggregateError(f"Aggregate '{agg}' needs a field.")
    return lambda group: fn(group.list(field))
