"""
Shared helpers for API routes.
Contains: DB access, JSON coercion, query-param clamping, payload builders.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from db_utils import get_conn_str
from nutrient_targets import ResolvedTargets

log = logging.getLogger("api")


# ─── DB helpers ─────────────────────────────────────────────

def _conn_str() -> str:
    return get_conn_str()


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Mapping):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def _fetch_all(query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
    cs = _conn_str()
    if not cs:
        raise RuntimeError("POSTGRES_CONNECTION_STRING is not set")
    conn = psycopg2.connect(cs)
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params or ())
            rows = cur.fetchall()
            return [{k: _to_jsonable(v) for k, v in dict(row).items()} for row in rows]
    finally:
        conn.close()


def _fetch_one(query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
    rows = _fetch_all(query, params=params)
    return rows[0] if rows else None


# ─── Param coercion ────────────────────────────────────────

def _clamp_int(value: Any, lo: int, hi: int, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(v):
        return default
    return max(lo, min(hi, int(v)))


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


# ─── Payload builders ──────────────────────────────────────

def _targets_payload(user_id: str, targets: ResolvedTargets) -> Dict[str, Any]:
    bands = {}
    for key, band in sorted(targets.bands.items()):
        row = asdict(band)
        bands[key] = {
            "recommended": row["recommended"],
            "lowerSafe": row["lower_safe"],
            "upperSafe": row["upper_safe"],
            "upperLimit": row["upper_limit"],
            "unit": row["unit"],
            "referenceType": row["reference_type"],
            "sex": row["sex"],
            "minYears": row["min_years"],
            "maxYears": row["max_years"],
        }
    return {
        "userId": user_id,
        "profileKey": targets.profile_key,
        "usedFallback": targets.used_fallback,
        "goals": dict(sorted(targets.goals.items())),
        "bands": bands,
    }
