"""
Crosstab (contingency / matrix table) built from a cube and a pivot.

Row fields stay as columns, each distinct combination of column fields
becomes a column, and cells hold the requested measure values.
"""

from __future__ import annotations

from typing import List

from core.table import Table

LABEL_SEPARATOR = " / "


def crosstab(table: Table, rows: List[str], columns: List[str], values: List[str]) -> Table:
    """Pivot ``table.cube(rows + columns + values)`` on the column fields.

    With one value field each cell is that measure's value; with several
    it is a mapping of value field -> value. Combinations absent from the
    sliced data hold None.
    """
    summary = table.cube(*rows, *columns, *values)

    def row_key(row):
        return {r: row.get(r) for r in rows}

    def column_label(row):
        return LABEL_SEPARATOR.join(str(row.get(c)) for c in columns)

    def cell(group):
        if group.count() == 0:
            return None
        first = group[0]
        return {v: first.get(v) for v in values}

    if not columns:
        return summary
    return summary.group(row_key, cell, column_label)
