"""
Table: the in-memory tabular model.

A Table owns a list of rows (plain dicts), calculation definitions
(per-row derived fields, evaluated on read), measure definitions
(aggregates over a group of rows) and a slicer context (named filter
predicates contributed by independent subscribers).

Every operation returns a new Table. The slicer methods are the only
in-place mutation, so all holders of one Table see each other's slicers;
registered observers are notified after each slicer change.

Callbacks are offered ``(row, index, table)`` (measures: ``(group,
group_index, parent)``) and may declare fewer positional parameters.
Rows handed to callbacks are RowView mappings, so calculations can be
read like any other field.
"""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Mapping
from typing import Any, Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Union

import httpx
import pandas as pd

from . import config
from .errors import CastError, FetchError, FieldResolutionError
from .fields import RowView, column_category, model_fields, resolve_field
from .grouping import group_table
from .join import join_tables
from .models import FieldCategory, JoinType, SlicerEvent
from .series import UnivariateSeries
from .utils import (
    call_with_arity,
    df_to_records_safe,
    flatten_names,
    is_missing,
    parse_float,
    parse_int,
    parse_string,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Observer = Callable[["Table", str, Optional[Hashable]], None]

CAST_FUNCTIONS: Dict[str, Callable[[Any], Any]] = {
    "int": parse_int,
    "float": parse_float,
    "string": parse_string,
}


class Table:
    """Rows plus the calculations, measures and slicers defined over them."""

    def __init__(
        self,
        rows: Optional[Iterable[Mapping]] = None,
        calculations: Optional[Mapping[str, Callable]] = None,
        measures: Optional[Mapping[str, Callable]] = None,
    ) -> None:
        self._rows: List[Row] = [dict(r) for r in (rows or [])]
        self._calculations: Dict[str, Callable] = dict(calculations or {})
        self._measures: Dict[str, Callable] = dict(measures or {})
        self._slicers: Dict[Hashable, Callable] = {}
        self._observers: List[Observer] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, rows: Iterable[Mapping]) -> "Table":
        """Wrap a list of records."""
        return cls(rows)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "Table":
        return cls(df_to_records_safe(df))

    @classmethod
    def from_csv(cls, data: Union[str, bytes]) -> "Table":
        """Parse CSV text; empty cells become None."""
        buffer = io.BytesIO(data) if isinstance(data, bytes) else io.StringIO(data)
        df = pd.read_csv(buffer)
        logger.debug("Parsed CSV: %d rows, %d columns", len(df), len(df.columns))
        return cls.from_dataframe(df)

    @classmethod
    async def fetch(
        cls,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> "Table":
        """GET a JSON array of records. Any failure raises FetchError."""
        logger.info("starting read from %s", url)
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(timeout=timeout or config.FETCH_TIMEOUT_S)
        try:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"Response from {url} is not valid JSON: {exc}") from exc
        finally:
            if owns_client:
                await client.aclose()

        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise FetchError(f"Response from {url} is not a JSON array of objects.")
        logger.info("%d rows read.", len(data))
        return cls(data)

    def _derive(self, rows: Iterable[Mapping], carry: bool = True) -> "Table":
        """New Table over *rows*, with this table's definitions when *carry*."""
        if carry:
            return Table(rows, self._calculations, self._measures)
        return Table(rows)

    def _subset(self, indices: Iterable[int]) -> "Table":
        return self._derive([self._rows[i] for i in indices])

    def clone(self) -> "Table":
        """Independent copy: rows, definitions and slicers."""
        twin = self._derive(self._rows)
        with self._lock:
            twin._slicers = dict(self._slicers)
        return twin

    def to_dataframe(self, include_calculations: bool = False) -> pd.DataFrame:
        if include_calculations:
            return pd.DataFrame.from_records([dict(view) for view in self])
        return pd.DataFrame.from_records(self.rows)

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    @property
    def rows(self) -> List[Row]:
        """Copies of the stored rows (physical values only)."""
        return [dict(r) for r in self._rows]

    @property
    def calculations(self) -> Dict[str, Callable]:
        return dict(self._calculations)

    @property
    def measures(self) -> Dict[str, Callable]:
        return dict(self._measures)

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[RowView]:
        for index, row in enumerate(self._rows):
            yield RowView(self, row, index)

    def __getitem__(self, index: int) -> RowView:
        if index < 0:
            index += len(self._rows)
        if not 0 <= index < len(self._rows):
            raise IndexError(f"Row index {index} out of range for {len(self._rows)} rows.")
        return RowView(self, self._rows[index], index)

    def __repr__(self) -> str:
        return (
            f"Table(rows={len(self._rows)}, calculations={list(self._calculations)}, "
            f"measures={list(self._measures)})"
        )

    def count(self) -> int:
        return len(self._rows)

    def get_field(self, index: int, name: str) -> Any:
        """Resolve *name* on row *index*: physical value, else calculation."""
        return resolve_field(self, self._rows[index], index, name)

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    def column_category(self, name: str) -> FieldCategory:
        return column_category(self, name)

    def model(self) -> List[str]:
        return model_fields(self)

    def calculate(self, name: str, fn: Callable) -> "Table":
        """Same model plus calculation *name* = ``fn(row, index, table)``."""
        twin = self.clone()
        twin._calculations[name] = fn
        return twin

    def measure(self, name: str, fn: Callable) -> "Table":
        """Same model plus measure *name* = ``fn(group, group_index, parent)``."""
        twin = self.clone()
        twin._measures[name] = fn
        return twin

    # ------------------------------------------------------------------
    # Row operations
    # ------------------------------------------------------------------

    def map(self, fn: Callable) -> "Table":
        return self._derive(call_with_arity(fn, view, view.index, self) for view in self)

    def filter(self, fn: Callable) -> "Table":
        return self._derive(
            view._row for view in self if call_with_arity(fn, view, view.index, self)
        )

    def sort(self, fn: Callable, descending: bool = False) -> "Table":
        """Stable sort on ``fn(row)``; rows with a missing key go last."""
        keyed = []
        missing = []
        for view in self:
            key = call_with_arity(fn, view, view.index, self)
            (missing if is_missing(key) else keyed).append((key, view.index))
        keyed.sort(key=lambda pair: pair[0], reverse=descending)
        order = [i for _, i in keyed] + [i for _, i in missing]
        return self._subset(order)

    def head(self, n: int) -> "Table":
        return self._derive(self._rows[: max(n, 0)])

    def select(self, *names: Union[str, List[str]]) -> "Table":
        """Keep only *names* per row; absent fields become None."""
        fields = flatten_names(names)
        return self._derive({f: view.get(f) for f in fields} for view in self)

    def remove(self, *names: Union[str, List[str]]) -> "Table":
        fields = set(flatten_names(names))
        return self._derive({k: v for k, v in row.items() if k not in fields} for row in self._rows)

    def cast(self, types: Mapping[str, str]) -> "Table":
        """Convert fields with ``int``, ``float`` or ``string`` parsing."""
        converters = {}
        for field, type_name in types.items():
            if type_name not in CAST_FUNCTIONS:
                allowed = ", ".join(CAST_FUNCTIONS)
                raise CastError(f"Unknown cast type '{type_name}' for '{field}'. Expected one of: {allowed}.")
            converters[field] = CAST_FUNCTIONS[type_name]
        return self._derive(
            {**row, **{f: convert(row.get(f)) for f, convert in converters.items()}}
            for row in self._rows
        )

    # ------------------------------------------------------------------
    # Grouping, cube, join
    # ------------------------------------------------------------------

    def group(
        self,
        group_fn: Callable,
        aggregate_fn: Optional[Callable] = None,
        pivot_fn: Optional[Callable] = None,
    ) -> "Table":
        """Partition rows by ``group_fn(row)`` (a mapping).

        Without *aggregate_fn* the result is the distinct key objects. With
        it, each key is merged with ``aggregate_fn(group)``. With
        *pivot_fn* too, each distinct pivot value becomes a column holding
        the aggregate over the matching rows (unwrapped when it has a
        single entry).
        """
        return group_table(self, group_fn, aggregate_fn, pivot_fn)

    def cube(self, *fields: Union[str, List[str]]) -> "Table":
        """Group the sliced data by the requested dimensions and evaluate the
        requested measures for each group."""
        names = flatten_names(fields)
        dimensions: List[str] = []
        measures: List[str] = []
        for name in names:
            if self.column_category(name) == FieldCategory.measure:
                measures.append(name)
            else:
                dimensions.append(name)

        sliced = self.sliced_data()

        def key(row):
            return {d: row.get(d) for d in dimensions}

        if not measures:
            return sliced.group(key)

        def aggregate(group, group_index, parent):
            return {
                m: call_with_arity(self._measures[m], group, group_index, parent)
                for m in measures
            }

        return sliced.group(key, aggregate)

    def join(
        self,
        other: Union["Table", Iterable[Mapping]],
        join_type: Union[str, JoinType],
        match_fn: Callable[[Any, Any], bool],
        combine_fn: Callable[[Any, Any], Mapping],
    ) -> "Table":
        """Relational join; each emitted (left, right) pair is merged by *combine_fn*."""
        if not isinstance(other, Table):
            other = Table(other)
        return join_tables(self, other, join_type, match_fn, combine_fn)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def list(self, name: str) -> UnivariateSeries:
        """Values of a column or calculation, one per row."""
        if self._rows:
            is_measure = self.column_category(name) == FieldCategory.measure
        else:
            is_measure = name in self._measures and name not in self._calculations
        if is_measure:
            raise FieldResolutionError(
                f"Field '{name}' is a measure and has no per-row values.", name
            )
        return UnivariateSeries(view.get(name) for view in self)

    def describe(self) -> "Table":
        """Descriptive statistics, one row per column then per calculation."""
        first = self._rows[0] if self._rows else {}
        names = list(first) + [c for c in self._calculations if c not in first]
        return Table(self.list(name).summary(name).model_dump() for name in names)

    # ------------------------------------------------------------------
    # Slicers
    # ------------------------------------------------------------------

    @property
    def slicers(self) -> Dict[Hashable, Callable]:
        with self._lock:
            return dict(self._slicers)

    def set_slicer(self, subscriber_id: Hashable, predicate: Callable) -> None:
        """Register (or replace) the predicate contributed by *subscriber_id*."""
        with self._lock:
            self._slicers[subscriber_id] = predicate
        logger.debug("Slicer set by %r (%d active)", subscriber_id, len(self._slicers))
        self._notify(SlicerEvent.slicer_set, subscriber_id)

    def unset_slicer(self, subscriber_id: Hashable) -> None:
        with self._lock:
            removed = self._slicers.pop(subscriber_id, None)
        if removed is not None:
            logger.debug("Slicer unset by %r", subscriber_id)
            self._notify(SlicerEvent.slicer_unset, subscriber_id)

    def reset_slicers(self) -> None:
        with self._lock:
            self._slicers.clear()
        self._notify(SlicerEvent.slicers_reset, None)

    def sliced_data(self) -> "Table":
        """Rows passing every active slicer, with definitions carried forward."""
        predicates = list(self.slicers.values())
        if not predicates:
            return self._derive(self._rows)
        return self._derive(
            view._row for view in self
            if all(call_with_arity(p, view, view.index, self) for p in predicates)
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def observe(self, callback: Observer) -> Callable[[], None]:
        """Call ``callback(table, event, subscriber_id)`` after slicer changes.

        Returns a function that removes the observer.
        """
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, event: SlicerEvent, subscriber_id: Optional[Hashable]) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            callback(self, event.value, subscriber_id)
