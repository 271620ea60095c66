"""
Table model API routes, mounted as a sub-router on the main FastAPI app.

Exposes the model of a stored table (fields, measures), cube / crosstab
queries, slicer registration for interactive cross-filtering, and an SSE
stream of slicer changes. Every analysis endpoint reads the sliced data.
"""

from __future__ import annotations

import logging
from typing import Any, List

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from core.errors import FieldResolutionError, TableError
from core.models import (
    CrosstabRequest,
    CubeRequest,
    FieldCategory,
    MeasureRequest,
    SlicerRequest,
)
from core.storage import get_session, get_table, put_table
from core.table import Table
from server.events import bridge
from skills.crosstab import crosstab
from skills.measures import aggregate_measure
from skills.regression import linear_fit

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["tables"])


def _require_session_id(request: Request) -> str:
    sid = request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header.")
    return sid


def _require_table(sid: str, name: str) -> Table:
    table = get_table(sid, name)
    if table is None:
        raise HTTPException(status_code=404, detail=f"Table '{name}' not found.")
    return table


def _bad_request(ctx: str, exc: TableError) -> HTTPException:
    logger.warning("%s failed: %s", ctx, exc)
    return HTTPException(status_code=400, detail=str(exc))


def _slicer_predicate(field: str, values: List[Any]):
    def predicate(row):
        return row.get(field) in values
    return predicate


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

@router.get("/tables/{name}/model")
async def table_model(request: Request, name: str):
    """Fields of the model with their category."""
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    fields = [
        {"name": f, "category": table.column_category(f).value}
        for f in table.model()
    ]
    return {"table": name, "rows": table.count(), "fields": fields}


@router.post("/tables/{name}/measures")
async def add_measure(request: Request, name: str, body: MeasureRequest):
    """Define a named aggregate measure on the table."""
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        if body.field:
            table.column_category(body.field)
        augmented = table.measure(body.name, aggregate_measure(body.aggregate, body.field))
    except TableError as e:
        raise _bad_request("MEASURE", e)

    put_table(sid, name, augmented)
    bridge.attach(sid, name, augmented)
    logger.info("Measure '%s' (%s of %s) added to '%s'", body.name, body.aggregate, body.field, name)
    return {"table": name, "measure": body.name, "fields": augmented.model()}


@router.get("/tables/{name}/describe")
async def describe_table(request: Request, name: str):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    return {"table": name, "rows": table.sliced_data().describe().rows}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@router.post("/tables/{name}/cube")
async def cube_table(request: Request, name: str, body: CubeRequest):
    """Dimensions and measures in one call, after slicers."""
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        result = table.cube(*body.fields)
    except TableError as e:
        raise _bad_request("CUBE", e)
    return {"table": name, "fields": body.fields, "rows": result.rows}


@router.post("/tables/{name}/crosstab")
async def crosstab_table(request: Request, name: str, body: CrosstabRequest):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        result = crosstab(table, body.rows, body.columns, body.values)
    except TableError as e:
        raise _bad_request("CROSSTAB", e)
    return {"table": name, "rows": result.rows}


@router.get("/tables/{name}/corr")
async def correlation(request: Request, name: str, x: str = Query(...), y: str = Query(...)):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        data = table.sliced_data()
        value = data.list(x).corr(data.list(y))
    except TableError as e:
        raise _bad_request("CORR", e)
    return {"table": name, "x": x, "y": y, "corr": value}


@router.get("/tables/{name}/regression")
async def regression(request: Request, name: str, x: str = Query(...), y: str = Query(...)):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        fit = linear_fit(table.sliced_data(), x, y)
    except TableError as e:
        raise _bad_request("REGRESSION", e)
    if fit is None:
        raise HTTPException(status_code=422, detail="Not enough numeric data for a linear fit.")
    return fit.model_dump()


# ---------------------------------------------------------------------------
# Slicers
# ---------------------------------------------------------------------------

@router.get("/tables/{name}/slicers")
async def list_slicers(request: Request, name: str):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    return {
        "table": name,
        "slicers": [str(s) for s in table.slicers],
        "sliced_rows": table.sliced_data().count(),
    }


@router.put("/tables/{name}/slicers/{subscriber_id}")
async def set_slicer(request: Request, name: str, subscriber_id: str, body: SlicerRequest):
    """Keep only rows whose field value is one of ``values``."""
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    try:
        category = table.column_category(body.field)
        if category == FieldCategory.measure:
            raise FieldResolutionError(
                f"Field '{body.field}' is a measure and cannot slice rows.", body.field
            )
    except TableError as e:
        raise _bad_request("SLICER", e)
    table.set_slicer(subscriber_id, _slicer_predicate(body.field, body.values))
    return {"table": name, "subscriber_id": subscriber_id, "sliced_rows": table.sliced_data().count()}


@router.delete("/tables/{name}/slicers/{subscriber_id}")
async def unset_slicer(request: Request, name: str, subscriber_id: str):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    table.unset_slicer(subscriber_id)
    return {"table": name, "subscriber_id": subscriber_id, "sliced_rows": table.sliced_data().count()}


@router.delete("/tables/{name}/slicers")
async def reset_slicers(request: Request, name: str):
    sid = _require_session_id(request)
    table = _require_table(sid, name)
    table.reset_slicers()
    return {"table": name, "sliced_rows": table.count()}


@router.get("/tables/{name}/events")
async def stream_table_events(
    request: Request,
    name: str,
    session_id: str = Query(None, alias="session_id"),
):
    """
    SSE endpoint: streams slicer events for a table.

    EventSource doesn't support custom headers, so session_id may be passed
    as a query parameter.
    """
    sid = session_id or request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing session_id query parameter.")
    if name not in get_session(sid):
        raise HTTPException(status_code=404, detail=f"Table '{name}' not found.")

    channel = bridge.subscribe(sid, name)

    async def _stream():
        try:
            async for event_str in channel:
                yield event_str
        finally:
            bridge.unsubscribe(sid, name, channel)

    return StreamingResponse(
        _stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
