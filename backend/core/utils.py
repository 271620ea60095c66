"""
Shared utility helpers for the engine.

Pure functions without I/O.
"""

from __future__ import annotations

import inspect
import math
import re
import weakref
from typing import Any, Callable, Hashable, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd


# ---------------------------------------------------------------------------
# Missing values
# ---------------------------------------------------------------------------

def is_missing(value: Any) -> bool:
    """True for None, NaN, pd.NA and NaT. Zero and empty strings are present."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset, np.ndarray)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def is_number(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return False
    return isinstance(value, (int, float, np.integer, np.floating))


def to_native(value: Any) -> Any:
    """Unbox numpy scalars so rows hold plain Python values."""
    if isinstance(value, np.generic):
        return value.item()
    return value


# ---------------------------------------------------------------------------
# DataFrame safety
# ---------------------------------------------------------------------------

def df_json_safe(df: pd.DataFrame) -> pd.DataFrame:
    """Replace +/-inf -> NaN, then NaN -> None so JSON serialization works."""
    if df.empty:
        return df
    tmp = df.replace([np.inf, -np.inf], np.nan)
    tmp = tmp.astype(object)
    return tmp.where(pd.notna(tmp), None)


def df_to_records_safe(df: pd.DataFrame) -> list[dict]:
    """Convert DataFrame to list of dicts with JSON-safe values."""
    records = df_json_safe(df).to_dict(orient="records")
    return [{str(k): to_native(v) for k, v in rec.items()} for rec in records]


# ---------------------------------------------------------------------------
# Callback arity
# ---------------------------------------------------------------------------

# Keyed weakly: holds no reference to caller callables or what they capture.
_ARITY_CACHE: "weakref.WeakKeyDictionary[Callable, Optional[int]]" = weakref.WeakKeyDictionary()


def _signature_arity(fn: Callable) -> Optional[int]:
    """Number of positional parameters *fn* accepts; None means unbounded."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return 1
    count = 0
    for p in sig.parameters.values():
        if p.kind == p.VAR_POSITIONAL:
            return None
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


def _positional_arity(fn: Callable) -> Optional[int]:
    try:
        return _ARITY_CACHE[fn]
    except KeyError:
        pass
    except TypeError:  # builtins and unhashable callables are not cached
        return _signature_arity(fn)
    arity = _signature_arity(fn)
    _ARITY_CACHE[fn] = arity
    return arity


def call_with_arity(fn: Callable, *args: Any) -> Any:
    """Call *fn* with as many leading *args* as it declares.

    Lets callers write ``lambda row: ...`` where the engine offers
    ``(row, index, table)``.
    """
    arity = _positional_arity(fn)
    if arity is None:
        return fn(*args)
    return fn(*args[:arity])


# ---------------------------------------------------------------------------
# Structural keys
# ---------------------------------------------------------------------------

_MISSING_KEY = ("missing",)


def freeze_key(value: Any) -> Hashable:
    """Canonical hashable form of a (possibly nested) key object.

    Mappings compare regardless of key order; None and NaN share one key.
    """
    if isinstance(value, Mapping):
        items = sorted(((str(k), freeze_key(v)) for k, v in value.items()), key=lambda kv: kv[0])
        return ("map", tuple(items))
    if isinstance(value, (list, tuple)):
        return ("seq", tuple(freeze_key(v) for v in value))
    if isinstance(value, (set, frozenset)):
        return ("set", frozenset(freeze_key(v) for v in value))
    if isinstance(value, (bool, np.bool_)):
        return ("bool", bool(value))
    if is_missing(value):
        return _MISSING_KEY
    value = to_native(value)
    try:
        hash(value)
    except TypeError:
        return ("repr", repr(value))
    return ("scalar", value)


def is_scalar(value: Any) -> bool:
    return not isinstance(value, (Mapping, list, tuple, set, frozenset, np.ndarray))


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------

def flatten_names(names: Iterable[Any]) -> List[str]:
    """Accept both ``f("a", "b")`` and ``f(["a", "b"])``; drops empty entries."""
    flat: List[str] = []
    for name in names:
        if isinstance(name, (list, tuple)):
            flat.extend(n for n in name if n)
        elif name:
            flat.append(name)
    return flat


# ---------------------------------------------------------------------------
# Numeric parsing (cast)
# ---------------------------------------------------------------------------

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse: ``"12.7"`` -> 12, ``"42px"`` -> 42, junk -> None."""
    if is_missing(value) or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (int, np.integer)):
        return int(value)
    if is_number(value):
        value = float(value)
        return int(value) if math.isfinite(value) else None
    m = _INT_PREFIX.match(str(value))
    return int(m.group(1)) if m else None


def parse_float(value: Any) -> Optional[float]:
    """Leading-float parse: ``"3.5kg"`` -> 3.5, junk -> None."""
    if is_missing(value) or isinstance(value, (bool, np.bool_)):
        return None
    if is_number(value):
        return float(value)
    m = _FLOAT_PREFIX.match(str(value))
    return float(m.group(1)) if m else None


def parse_string(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))
