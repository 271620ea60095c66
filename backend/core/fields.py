"""
Field resolution for tables.

A field name is a physical column, a calculation or a measure. Row views
resolve physical values first, then calculations (lazily, recursively),
and refuse measures, which only exist over groups of rows.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterator, List

from .errors import CalculationCycleError, FieldResolutionError
from .models import FieldCategory
from .utils import call_with_arity

if TYPE_CHECKING:
    from .table import Table


def resolve_field(
    table: "Table",
    row: Dict[str, Any],
    index: int,
    name: str,
    resolving: FrozenSet[str] = frozenset(),
) -> Any:
    """Value of *name* on *row*: physical value, else calculation result.

    *resolving* holds the calculations already being evaluated for this
    row, so a calculation that reaches itself fails instead of recursing.
    """
    if name in row:
        return row[name]

    calculation = table._calculations.get(name)
    if calculation is not None:
        if name in resolving:
            involved = ", ".join(sorted(resolving))
            raise CalculationCycleError(
                f"Calculation '{name}' depends on itself (via {involved}).", name
            )
        view = RowView(table, row, index, resolving | {name})
        return call_with_arity(calculation, view, index, table)

    if name in table._measures:
        raise FieldResolutionError(
            f"Field '{name}' is a measure and cannot be read at row level.", name
        )
    raise FieldResolutionError(f"Field '{name}' not found in row {index}.", name)


class RowView(Mapping):
    """Read-only mapping over one stored row that also exposes calculations."""

    __slots__ = ("_table", "_row", "_index", "_resolving")

    def __init__(
        self,
        table: "Table",
        row: Dict[str, Any],
        index: int,
        resolving: FrozenSet[str] = frozenset(),
    ) -> None:
        self._table = table
        self._row = row
        self._index = index
        self._resolving = resolving

    @property
    def index(self) -> int:
        return self._index

    @property
    def table(self) -> "Table":
        return self._table

    def physical(self) -> Dict[str, Any]:
        """Copy of the stored values, without calculations."""
        return dict(self._row)

    def __getitem__(self, name: str) -> Any:
        return resolve_field(self._table, self._row, self._index, name, self._resolving)

    def get(self, name: str, default: Any = None) -> Any:
        """*default* only when the table does not define *name* at all.

        Errors raised while computing a calculation propagate, including
        KeyErrors from the calculation itself.
        """
        table = self._table
        if name in self._row or name in table._calculations or name in table._measures:
            return self[name]
        return default

    def __contains__(self, name: object) -> bool:
        return name in self._row or name in self._table._calculations

    def __iter__(self) -> Iterator[str]:
        yield from self._row
        for name in self._table._calculations:
            if name not in self._row:
                yield name

    def __len__(self) -> int:
        extra = sum(1 for name in self._table._calculations if name not in self._row)
        return len(self._row) + extra

    def __repr__(self) -> str:
        return f"RowView(index={self._index}, row={self._row!r})"


# ---------------------------------------------------------------------------
# Field category registry
# ---------------------------------------------------------------------------

def column_category(table: "Table", name: str) -> FieldCategory:
    """Classify *name*: first-row column, then calculation, then measure."""
    first = table._rows[0] if table._rows else None
    if first is not None and name in first:
        return FieldCategory.column
    if name in table._calculations:
        return FieldCategory.calculation
    if name in table._measures:
        return FieldCategory.measure
    raise FieldResolutionError(f"Field '{name}' not found in model.", name)


def model_fields(table: "Table") -> List[str]:
    """Columns of the first row, then calculations, then measures; no duplicates."""
    names: List[str] = []
    seen = set()
    first = table._rows[0] if table._rows else {}
    for group in (first.keys(), table._calculations.keys(), table._measures.keys()):
        for name in group:
            if name not in seen:
                seen.add(name)
                names.append(name)
    return names
