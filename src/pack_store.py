"""
Correlation Pack Store — one pack per (user, dateKey, algorithmVersion).

Used for both the daily roundup (``daily_roundup_v1``) and the lag-1
engine (``correlation_engine_v1``), and for client-generated packs posted
through the API.  A rerun for the same key replaces the candidate list;
``created_at`` is only ever written by the first insert.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

import psycopg2

from constants import PACKS_TABLE
from daily_records import is_valid_date_key
from db_utils import resolve_conn_str
from errors import AnalysisInputError, PersistenceError

log = logging.getLogger("pack_store")

_INT_EXTRAS = ("lagDays", "n", "nEvent", "nNonEvent")
_FLOAT_EXTRAS = ("meanEvent", "meanNonEvent", "threshold", "delta")
# Roundup context travels with the candidate unchanged
_PASSTHROUGH_EXTRAS = (
    "value", "goal", "pctGoal", "bucket", "coverage", "isTrustedDay",
    "lowerSafe", "upperSafe", "upperLimit", "unit", "referenceType",
)


def _finite_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def normalize_candidate(c: Any) -> Optional[Dict[str, Any]]:
    """Sanitize one candidate, or None if it lacks keys or a finite strength."""
    if not isinstance(c, Mapping):
        return None

    input_key = c.get("inputKey").strip() if isinstance(c.get("inputKey"), str) else ""
    output_key = c.get("outputKey").strip() if isinstance(c.get("outputKey"), str) else ""
    strength = _finite_float(c.get("strength"))
    if not input_key or not output_key or strength is None:
        return None

    direction = c.get("direction").strip().lower() if isinstance(c.get("direction"), str) else ""
    if direction not in ("positive", "negative"):
        direction = "positive" if strength >= 0 else "negative"

    out: Dict[str, Any] = {
        "inputKey": input_key,
        "outputKey": output_key,
        "direction": direction,
        "strength": strength,
    }
    mode = c.get("mode")
    if isinstance(mode, str) and mode.strip():
        out["mode"] = mode.strip()
    for key in _INT_EXTRAS:
        v = _finite_float(c.get(key))
        if v is not None:
            out[key] = int(v)
    for key in _FLOAT_EXTRAS:
        v = _finite_float(c.get(key))
        if v is not None:
            out[key] = v
    for key in _PASSTHROUGH_EXTRAS:
        if key in c:
            out[key] = c[key]
    return out


def validate_pack_key(user_id: Any, date_key: Any, algorithm_version: Any) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise AnalysisInputError("userId is required")
    if not isinstance(date_key, str) or not date_key:
        raise AnalysisInputError("dateKey is required")
    if not is_valid_date_key(date_key):
        raise AnalysisInputError("dateKey must be in YYYY-MM-DD format")
    if not isinstance(algorithm_version, str) or not algorithm_version.strip():
        raise AnalysisInputError("algorithmVersion is required")


class CorrelationPackStore:

    def __init__(self, conn_str: Optional[str] = None):
        self.conn_str = conn_str

    def store(
        self,
        user_id: str,
        date_key: str,
        algorithm_version: str,
        candidates: Sequence[Any],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Upsert a pack and return how many candidates survived normalization.

        A pack with zero valid candidates is still written, so the store
        records that analysis ran for that day.
        """
        validate_pack_key(user_id, date_key, algorithm_version)
        if not isinstance(candidates, (list, tuple)):
            raise AnalysisInputError("candidates must be an array")

        normalized: List[Dict[str, Any]] = [
            n for n in (normalize_candidate(c) for c in candidates) if n is not None
        ]
        meta = metadata or {}
        window_days = _finite_float(meta.get("windowDays"))
        lag_days = _finite_float(meta.get("lagDays"))

        try:
            conn = psycopg2.connect(resolve_conn_str(self.conn_str))
            try:
                cur = conn.cursor()
                cur.execute(
                    f"""INSERT INTO {PACKS_TABLE}
                       (user_id, date_key, algorithm_version, candidates,
                        stored_count, window_days, lag_days, created_at, updated_at)
                       VALUES (%s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
                       ON CONFLICT (user_id, date_key, algorithm_version) DO UPDATE SET
                           candidates = EXCLUDED.candidates,
                           stored_count = EXCLUDED.stored_count,
                           window_days = COALESCE(EXCLUDED.window_days, {PACKS_TABLE}.window_days),
                           lag_days = COALESCE(EXCLUDED.lag_days, {PACKS_TABLE}.lag_days),
                           updated_at = NOW()
                    """,
                    (
                        user_id.strip(), date_key, algorithm_version.strip(),
                        json.dumps(normalized), len(normalized),
                        int(window_days) if window_days is not None else None,
                        int(lag_days) if lag_days is not None else None,
                    ),
                )
                cur.close()
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        except psycopg2.Error as e:
            log.exception("Failed to store %s pack for user %s on %s",
                          algorithm_version, user_id, date_key)
            raise PersistenceError(f"pack store failed: {e}") from e

        log.info("   Stored %s pack %s for user %s (%d candidates)",
                 algorithm_version, date_key, user_id, len(normalized))
        return len(normalized)
