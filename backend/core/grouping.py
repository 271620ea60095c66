"""
Group / pivot engine.

Rows are partitioned by a canonical structural key built from the group
function's result, so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` land in
the same group. Output rows follow first-seen group order.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Dict, Hashable, List, Optional, Tuple

from .errors import GroupingError
from .utils import call_with_arity, freeze_key, is_scalar

if TYPE_CHECKING:
    from .table import Table


def partition(table: "Table", group_fn: Callable) -> List[Tuple[Dict[str, Any], List[int]]]:
    """[(group key object, row indices), ...] in first-seen order."""
    groups: Dict[Hashable, Tuple[Dict[str, Any], List[int]]] = {}
    for view in table:
        key_obj = call_with_arity(group_fn, view, view.index, table)
        if not isinstance(key_obj, Mapping):
            raise GroupingError(
                f"Group function must return a mapping, got {type(key_obj).__name__}."
            )
        key = freeze_key(key_obj)
        if key not in groups:
            groups[key] = (dict(key_obj), [])
        groups[key][1].append(view.index)
    return list(groups.values())


def pivot_label(value: Any) -> str:
    if value is None:
        return "null"
    return value if isinstance(value, str) else str(value)


def _unwrap(result: Any) -> Any:
    if isinstance(result, Mapping) and len(result) == 1:
        return next(iter(result.values()))
    if isinstance(result, Mapping):
        return dict(result)
    return result


def group_table(
    table: "Table",
    group_fn: Callable,
    aggregate_fn: Optional[Callable] = None,
    pivot_fn: Optional[Callable] = None,
) -> "Table":
    """Implements ``Table.group``; see there for the contract."""
    if pivot_fn is not None and aggregate_fn is None:
        raise GroupingError("A pivot function needs an aggregate function.")

    partitions = partition(table, group_fn)

    if aggregate_fn is None:
        return table._derive([key for key, _ in partitions], carry=False)

    if pivot_fn is None:
        rows = []
        for group_index, (key, indices) in enumerate(partitions):
            sub = table._subset(indices)
            agg = call_with_arity(aggregate_fn, sub, group_index, table)
            if not isinstance(agg, Mapping):
                raise GroupingError(
                    f"Aggregate function must return a mapping, got {type(agg).__name__}."
                )
            rows.append({**key, **agg})
        return table._derive(rows, carry=False)

    # Pivot values are collected over all rows before partitioning.
    row_pivot: Dict[int, Hashable] = {}
    pivots: Dict[Hashable, Any] = {}
    labels: Dict[str, Any] = {}
    for view in table:
        value = call_with_arity(pivot_fn, view, view.index, table)
        if not is_scalar(value):
            raise GroupingError(
                f"Pivot values must be scalars, got {type(value).__name__} at row {view.index}."
            )
        frozen = freeze_key(value)
        row_pivot[view.index] = frozen
        if frozen in pivots:
            continue
        label = pivot_label(value)
        if label in labels:
            raise GroupingError(
                f"Pivot values {labels[label]!r} and {value!r} both map to column '{label}'."
            )
        labels[label] = value
        pivots[frozen] = value

    rows = []
    for group_index, (key, indices) in enumerate(partitions):
        pivoted: Dict[str, Any] = {}
        for frozen, value in pivots.items():
            sub = table._subset([i for i in indices if row_pivot[i] == frozen])
            result = call_with_arity(aggregate_fn, sub, group_index, table)
            pivoted[pivot_label(value)] = _unwrap(result)
        rows.append({**key, **pivoted})
    return table._derive(rows, carry=False)
