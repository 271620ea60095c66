"""
Join engine: nested-loop matching with inner/left/right/outer semantics.

Output order: matched pairs (left index, then right index), then unmatched
left rows, then unmatched right rows. The missing side of an unmatched
pair is an empty dict.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Tuple, Union

from .errors import JoinTypeError
from .models import JoinType

if TYPE_CHECKING:
    from .table import Table


def parse_join_type(join_type: Union[str, JoinType]) -> JoinType:
    try:
        return JoinType(join_type)
    except ValueError:
        allowed = ", ".join(t.value for t in JoinType)
        raise JoinTypeError(f"Unknown join type '{join_type}'. Expected one of: {allowed}.") from None


def join_pairs(
    left: "Table",
    right: "Table",
    join_type: Union[str, JoinType],
    match_fn: Callable[[Any, Any], bool],
) -> List[Tuple[Mapping, Mapping]]:
    """Matched and unmatched (left, right) pairs before combining."""
    how = parse_join_type(join_type)
    left_views = list(left)
    right_views = list(right)

    # Ordered sets of indices never matched.
    unmatched_left: Dict[int, None] = dict.fromkeys(range(len(left_views)))
    unmatched_right: Dict[int, None] = dict.fromkeys(range(len(right_views)))

    pairs: List[Tuple[Mapping, Mapping]] = []
    for i, lrow in enumerate(left_views):
        for j, rrow in enumerate(right_views):
            if match_fn(lrow, rrow):
                pairs.append((lrow, rrow))
                unmatched_left.pop(i, None)
                unmatched_right.pop(j, None)

    if how in (JoinType.left, JoinType.outer):
        pairs.extend((left_views[i], {}) for i in unmatched_left)
    if how in (JoinType.right, JoinType.outer):
        pairs.extend(({}, right_views[j]) for j in unmatched_right)
    return pairs


def join_tables(
    left: "Table",
    right: "Table",
    join_type: Union[str, JoinType],
    match_fn: Callable[[Any, Any], bool],
    combine_fn: Callable[[Any, Any], Mapping],
) -> "Table":
    """Implements ``Table.join``."""
    rows = []
    for lrow, rrow in join_pairs(left, right, join_type, match_fn):
        merged = combine_fn(lrow, rrow)
        rows.append(dict(merged))
    return left._derive(rows, carry=False)
