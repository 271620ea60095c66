"""
Core enums and Pydantic models for the notebook engine.

All shared vocabulary lives here so the engine, skills and API agree.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Field categories & join types
# ---------------------------------------------------------------------------

class FieldCategory(str, Enum):
    column = "column"            # physical value stored on the row
    calculation = "calculation"  # per-row derived value, computed on read
    measure = "measure"          # aggregate over a group of rows


class JoinType(str, Enum):
    inner = "inner"
    left = "left"
    right = "right"
    outer = "outer"


class SlicerEvent(str, Enum):
    slicer_set = "slicer_set"
    slicer_unset = "slicer_unset"
    slicers_reset = "slicers_reset"


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

class ColumnSummary(BaseModel):
    name: str
    type: str
    count: int = 0
    distinct: int = 0
    fill: Optional[float] = None          # share of non-missing values
    mode: Optional[List[Any]] = None
    mean: Optional[float] = None
    min: Optional[Any] = None
    q1: Optional[Any] = None
    median: Optional[Any] = None
    q3: Optional[Any] = None
    max: Optional[Any] = None


class LinearFit(BaseModel):
    independent: str
    dependent: str
    intercept: float
    slope: float
    r: Optional[float] = None
    r2: float = 0.0
    n: int = 0


# ---------------------------------------------------------------------------
# API request bodies
# ---------------------------------------------------------------------------

class FetchRequest(BaseModel):
    url: str
    name: Optional[str] = None


class MeasureRequest(BaseModel):
    name: str
    aggregate: str = "count"
    field: Optional[str] = None


class CubeRequest(BaseModel):
    fields: List[str] = Field(default_factory=list)


class CrosstabRequest(BaseModel):
    rows: List[str] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)


class SlicerRequest(BaseModel):
    field: str
    values: List[Any] = Field(default_factory=list)
