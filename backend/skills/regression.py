"""
Simple linear regression between two fields of a table.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from core.models import LinearFit
from core.series import UnivariateSeries
from core.table import Table
from core.utils import is_missing, is_number


def linear_fit(table: Table, independent: str, dependent: str) -> Optional[LinearFit]:
    """Least-squares fit of *dependent* on *independent* over complete pairs.

    Returns None with fewer than three pairs or a constant independent field.
    """
    xs = table.list(independent)
    ys = table.list(dependent)

    pairs = [
        (x, y) for x, y in zip(xs, ys)
        if not is_missing(x) and not is_missing(y) and is_number(x) and is_number(y)
    ]
    if len(pairs) < 3:
        return None

    x = np.array([p[0] for p in pairs], dtype=float)
    y = np.array([p[1] for p in pairs], dtype=float)
    if np.ptp(x) == 0:
        return None

    X = np.column_stack([np.ones(len(x)), x])
    beta, *_ = np.linalg.lstsq(X, y, rcond=None)
    y_pred = X @ beta
    ss_res = float(np.sum((y - y_pred) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r2 = 1.0 - (ss_res / ss_tot) if ss_tot > 0 else 0.0

    r = UnivariateSeries(x.tolist()).corr(UnivariateSeries(y.tolist()))
    return LinearFit(
        independent=independent,
        dependent=dependent,
        intercept=round(float(beta[0]), 6),
        slope=round(float(beta[1]), 6),
        r=r,
        r2=round(r2, 6),
        n=len(pairs),
    )
