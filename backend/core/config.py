"""Runtime configuration read from the environment (and an optional .env)."""

from __future__ import annotations

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip() or default


def _env_int(key: str, default: int) -> int:
    raw = _env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = _env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(key: str, default: str) -> List[str]:
    raw = _env(key, default) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


# Seconds before a remote JSON fetch gives up.
FETCH_TIMEOUT_S = _env_float("NOTEBOOK_FETCH_TIMEOUT", 30.0)

# More tied modes than this and mode() reports nothing.
MODE_MAX_TIES = _env_int("NOTEBOOK_MODE_MAX_TIES", 5)

CORR_DECIMALS = _env_int("NOTEBOOK_CORR_DECIMALS", 3)

PREVIEW_MAX_ROWS = _env_int("NOTEBOOK_PREVIEW_MAX_ROWS", 100)

CORS_ORIGINS = _env_list("NOTEBOOK_CORS_ORIGINS", "*")
