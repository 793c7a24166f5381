"""
Daily records: the read-only per-day totals produced by meal/check-in
aggregation, plus logical-day keying and the loaders used by the engine.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import psycopg2
from psycopg2.extras import RealDictCursor

from constants import DAILY_TOTALS_TABLE, DATE_KEY_PATTERN, USER_PROFILES_TABLE

log = logging.getLogger("daily_records")

_DATE_KEY_RE = re.compile(DATE_KEY_PATTERN)

FETCH_BUFFER_DAYS = 10
MIN_FETCH_DAYS = 30
MAX_FETCH_DAYS = 450


def is_valid_date_key(value: Any) -> bool:
    if not isinstance(value, str) or not _DATE_KEY_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def add_days(date_key: str, days: int) -> str:
    return (date.fromisoformat(date_key) + timedelta(days=days)).isoformat()


def logical_date_key(instant: Optional[datetime] = None, tz_name: Optional[str] = None,
                     cutoff_hour: int = 3) -> str:
    """Calendar key of the logical day containing *instant*.

    The day boundary sits at ``cutoff_hour`` local time, so 01:30 belongs to
    the previous day.  Naive instants are treated as UTC; an unknown zone
    falls back to UTC.
    """
    dt = instant or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    shifted = dt - timedelta(hours=int(cutoff_hour or 0))
    tz = timezone.utc
    if tz_name and str(tz_name).strip():
        try:
            tz = ZoneInfo(str(tz_name).strip())
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("Unknown timezone %r, using UTC for logical day", tz_name)
    return shifted.astimezone(tz).date().isoformat()


def fetch_limit(window_days: int, lag_days: int) -> int:
    """How many most-recent records a run scans."""
    return min(max(window_days + lag_days + FETCH_BUFFER_DAYS, MIN_FETCH_DAYS), MAX_FETCH_DAYS)


def _as_mapping(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (str, bytes)) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


@dataclass
class DailyRecord:
    user_id: str
    date_key: str
    totals: Dict[str, Any] = field(default_factory=dict)
    totals_estimated: Dict[str, Any] = field(default_factory=dict)
    ingredients_exposure: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DailyRecord":
        return cls(
            user_id=str(row.get("user_id") or ""),
            date_key=str(row.get("date_key") or ""),
            totals=_as_mapping(row.get("totals")),
            totals_estimated=_as_mapping(row.get("totals_estimated")),
            ingredients_exposure=_as_mapping(row.get("ingredients_exposure")),
        )


def sort_records(records: List[DailyRecord]) -> List[DailyRecord]:
    """Drop malformed/duplicate keys and return records ascending by dateKey."""
    by_key: Dict[str, DailyRecord] = {}
    for rec in records:
        if is_valid_date_key(rec.date_key):
            by_key[rec.date_key] = rec
    return [by_key[k] for k in sorted(by_key)]


def fetch_daily_records(conn_str: str, user_id: str, limit: int) -> List[DailyRecord]:
    """Load the *limit* most recent well-formed daily records, oldest first."""
    conn = psycopg2.connect(conn_str)
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT user_id, date_key, totals, totals_estimated, ingredients_exposure
                FROM {DAILY_TOTALS_TABLE}
                WHERE user_id = %s AND date_key ~ %s
                ORDER BY date_key DESC
                LIMIT %s
                """,
                (user_id, DATE_KEY_PATTERN, int(limit)),
            )
            rows = cur.fetchall()
    finally:
        conn.close()
    records = sort_records([DailyRecord.from_row(r) for r in rows])
    log.info("Loaded %d daily records for user %s", len(records), user_id)
    return records


def fetch_user_profile(conn_str: str, user_id: str) -> Dict[str, Any]:
    """Return ``{age, sex, overrides, profile_key}``; empty values when absent."""
    conn = psycopg2.connect(conn_str)
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT age, sex, nutrient_goal_overrides, dri_profile_key
                FROM {USER_PROFILES_TABLE}
                WHERE user_id = %s
                """,
                (user_id,),
            )
            row = cur.fetchone()
    finally:
        conn.close()
    if not row:
        return {"age": None, "sex": None, "overrides": {}, "profile_key": None}
    return {
        "age": row.get("age"),
        "sex": row.get("sex"),
        "overrides": _as_mapping(row.get("nutrient_goal_overrides")),
        "profile_key": row.get("dri_profile_key"),
    }
