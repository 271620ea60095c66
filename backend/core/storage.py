"""
In-memory session store.

{session_id: {table_name: Table}} plus per-session upload hashes and
table metadata.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from .table import Table

SESSIONS: Dict[str, Dict[str, Table]] = {}
SESS_HASHES: Dict[str, Dict[str, str]] = {}
SESS_META: Dict[str, Dict[str, dict]] = {}


def get_session(session_id: str) -> Dict[str, Table]:
    if session_id not in SESSIONS:
        SESSIONS[session_id] = {}
    return SESSIONS[session_id]


def get_session_hashes(session_id: str) -> Dict[str, str]:
    if session_id not in SESS_HASHES:
        SESS_HASHES[session_id] = {}
    return SESS_HASHES[session_id]


def get_session_meta(session_id: str) -> Dict[str, dict]:
    if session_id not in SESS_META:
        SESS_META[session_id] = {}
    return SESS_META[session_id]


def get_table(session_id: str, name: str) -> Optional[Table]:
    return SESSIONS.get(session_id, {}).get(name)


def unique_table_name(session_id: str, base: str) -> str:
    """*base*, or *base*_2, *base*_3, ... if taken."""
    sess = get_session(session_id)
    base = base or "table"
    name = base
    i = 1
    while name in sess:
        i += 1
        name = f"{base}_{i}"
    return name


def put_table(session_id: str, name: str, table: Table, meta: Optional[dict] = None) -> dict:
    """Store *table* under *name*; keeps existing metadata unless *meta* is given."""
    get_session(session_id)[name] = table
    meta_store = get_session_meta(session_id)
    if meta is not None or name not in meta_store:
        meta_store[name] = {
            "created_at": datetime.utcnow().isoformat() + "Z",
            **(meta or {}),
        }
    meta_store[name]["n_rows"] = table.count()
    meta_store[name]["fields"] = table.model()
    return meta_store[name]
