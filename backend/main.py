from fastapi import FastAPI, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from core import config
from core.errors import FetchError
from core.models import FetchRequest
from core.storage import (
    get_session,
    get_session_hashes,
    get_session_meta,
    get_table,
    put_table,
    unique_table_name,
)
from core.table import Table
from server.api import router as tables_router
from server.events import bridge
import pandas as pd
import io
import logging
import hashlib
import json
from urllib.parse import urlparse

logger = logging.getLogger("uvicorn.error")
app = FastAPI(title="Analytics Notebook", description="Tables, measures and slicers over HTTP")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the table model API router
app.include_router(tables_router)


def require_session_id(request: Request) -> str:
    sid = request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header.")
    return sid


def _sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _log_response(ctx: str, payload) -> None:
    """Pretty-print JSON-able payloads; fall back to str()."""
    try:
        logger.info("%s response: %s", ctx, json.dumps(payload, indent=2, default=str))
    except (TypeError, ValueError):
        logger.info("%s response (non-serializable): %s", ctx, str(payload))


def human_dtype(s: pd.Series) -> str:
    dt = s.dtype
    if pd.api.types.is_bool_dtype(dt):
        return "boolean"
    if pd.api.types.is_integer_dtype(dt):
        return "integer"
    if pd.api.types.is_float_dtype(dt):
        return "float"
    if pd.api.types.is_datetime64_any_dtype(dt):
        return "datetime"
    if isinstance(dt, pd.CategoricalDtype):
        return "category"
    if pd.api.types.is_string_dtype(dt):
        nonna = s.dropna()
        if len(nonna) == 0 or (nonna.map(type) == str).all():
            return "string"
        return "object"
    return str(dt)


def _read_upload(content: bytes, ext: str) -> pd.DataFrame:
    """CSV by default; ``.json`` files must hold an array of records."""
    if ext == "json":
        records = json.loads(content)
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise ValueError("JSON upload must be an array of objects.")
        return pd.DataFrame.from_records(records)
    df = pd.read_csv(io.BytesIO(content))
    # normalize to pandas nullable dtypes (text -> 'string', ints -> 'Int64', ...)
    return df.convert_dtypes()


def _table_meta(df: pd.DataFrame, filename: str, ext: str, file_size) -> dict:
    return {
        "file_name": filename,
        "file_ext": ext,
        "file_size": file_size,
        "n_cols": int(len(df.columns)),
        "columns": [str(c) for c in df.columns],
        "dtypes": {str(c): human_dtype(df[c]) for c in df.columns},
    }


@app.post("/upload")
async def upload(request: Request, file: UploadFile = File(...)):
    sid = require_session_id(request)
    content = await file.read()

    file_size = len(content)
    filename = file.filename or "table.csv"
    ext = (filename.rsplit(".", 1)[1].lower() if "." in filename else "").strip()

    # duplicate detection (by content hash)
    file_hash = _sha256_bytes(content)
    sess_hashes = get_session_hashes(sid)
    if file_hash in sess_hashes:
        existing_name = sess_hashes[file_hash]
        dup_resp = {
            "ok": False,
            "duplicate": True,
            "table": existing_name,
            "detail": "Duplicate upload: this file was already uploaded for this session.",
        }
        _log_response("UPLOAD (duplicate)", dup_resp)
        return JSONResponse(status_code=409, content=dup_resp)

    try:
        df = _read_upload(content, ext)
    except (ValueError, pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.exception("Failed to read upload %s", filename)
        raise HTTPException(status_code=400, detail=f"Failed to read {ext or 'csv'} file: {e}")

    name = unique_table_name(sid, filename.rsplit(".", 1)[0])
    table = Table.from_dataframe(df)
    meta = put_table(sid, name, table, _table_meta(df, filename, ext, file_size))
    sess_hashes[file_hash] = name
    bridge.attach(sid, name, table)

    resp = {
        "ok": True,
        "table": name,
        "rows": table.count(),
        "columns": meta["columns"],
        "meta": meta,
    }
    _log_response("UPLOAD", resp)
    return resp


@app.post("/fetch")
async def fetch(request: Request, body: FetchRequest):
    """Load a JSON array of records from a URL into the session."""
    sid = require_session_id(request)
    try:
        table = await Table.fetch(body.url)
    except FetchError as e:
        logger.warning("FETCH failed: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    base = body.name or urlparse(body.url).path.rstrip("/").rsplit("/", 1)[-1].rsplit(".", 1)[0]
    name = unique_table_name(sid, base)
    df = table.to_dataframe()
    meta = put_table(sid, name, table, {**_table_meta(df, body.url, "json", None), "source_url": body.url})
    bridge.attach(sid, name, table)

    resp = {"ok": True, "table": name, "rows": table.count(), "columns": meta["columns"], "meta": meta}
    _log_response("FETCH", resp)
    return resp


@app.get("/tables")
async def tables(request: Request):
    sid = require_session_id(request)
    sess = get_session(sid)
    meta_store = get_session_meta(sid)

    tables_info = []
    for name, table in sess.items():
        meta = meta_store.get(name) or {"n_rows": table.count(), "fields": table.model()}
        tables_info.append({"name": name, **meta})

    resp = {"tables": tables_info}
    _log_response("TABLES", resp)
    return resp


@app.get("/table/{table_name}/preview")
async def table_preview(
    request: Request,
    table_name: str,
    offset: int = 0,
    limit: int = 50,
    sliced: bool = False,
):
    """Get a preview of the table data with cursor pagination."""
    sid = require_session_id(request)
    table = get_table(sid, table_name)
    if table is None:
        raise HTTPException(status_code=404, detail=f"Table '{table_name}' not found")

    limit = max(0, min(limit, config.PREVIEW_MAX_ROWS))
    offset = max(0, offset)

    source = table.sliced_data() if sliced else table
    total_rows = source.count()
    end = min(offset + limit, total_rows)
    rows = [dict(source[i]) for i in range(offset, end)]

    has_more = end < total_rows
    resp = {
        "table": table_name,
        "columns": [f for f in source.model() if f not in source.measures],
        "rows": rows,
        "total_rows": total_rows,
        "offset": offset,
        "limit": limit,
        "returned_rows": len(rows),
        "has_more": has_more,
        "next_offset": end if has_more else None,
        "sliced": sliced,
    }
    return resp
