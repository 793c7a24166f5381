"""
Promotion Engine — rolling tally of correlation candidates across runs.

Each (user, inputKey, outputKey, mode, lagDays) key moves through:

  unseen   (no row)
  tracked  seen_count >= 1, is_surfaced = false
  surfaced is_surfaced = true (terminal, never reverted)

Per run the key is seen in:
  seen_count     += 1
  confirm_streak  = streak + 1 if the candidate is strong this run, else 0
  surface once    when seen_count >= 5 and confirm_streak >= 2

"Strong": continuous |rho| >= 0.35, event |d| >= 0.8, and n >= 8 whenever
n is reported.  The read-modify-write runs under a row lock
(SELECT ... FOR UPDATE) so two concurrent runs cannot double-count.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor

from config import DEFAULT_CONFIG, EngineConfig
from constants import MODE_CONTINUOUS, USER_CORRELATIONS_TABLE
from daily_records import is_valid_date_key
from db_utils import resolve_conn_str
from errors import AnalysisInputError, PersistenceError
from pack_store import normalize_candidate

log = logging.getLogger("promotion")

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

# candidate key → column
_METADATA_COLUMNS = {
    "n": "n",
    "nEvent": "n_event",
    "nNonEvent": "n_non_event",
    "meanEvent": "mean_event",
    "meanNonEvent": "mean_non_event",
    "threshold": "threshold",
    "delta": "delta",
}

_STATE_COLUMNS = (
    "seen_count", "confirm_streak", "is_surfaced", "surfaced_at", "surfaced_date_key",
    "last_seen_date_key", "direction", "strength",
) + tuple(_METADATA_COLUMNS.values())


@dataclass
class PromotionSummary:
    newly_surfaced_count: int = 0
    processed_count: int = 0


def is_strong(candidate: Mapping[str, Any], config: EngineConfig = DEFAULT_CONFIG) -> bool:
    strength = candidate.get("strength")
    if isinstance(strength, bool) or not isinstance(strength, (int, float)) or not math.isfinite(strength):
        return False
    n = candidate.get("n")
    if isinstance(n, (int, float)) and not isinstance(n, bool) and math.isfinite(n):
        if n < config.strong_min_n:
            return False
    if candidate.get("mode") == MODE_CONTINUOUS:
        return abs(strength) >= config.strong_min_abs_rho
    return abs(strength) >= config.strong_min_abs_effect


def correlation_key(candidate: Mapping[str, Any], lag_days_fallback: int = 1) -> Tuple[str, str, str, int]:
    """(inputKey, outputKey, mode, lagDays); mode defaults to "unknown"."""
    input_key = str(candidate.get("inputKey") or "").strip()
    output_key = str(candidate.get("outputKey") or "").strip()
    mode = str(candidate.get("mode") or "").strip() or "unknown"
    lag = candidate.get("lagDays")
    if isinstance(lag, (int, float)) and not isinstance(lag, bool) and math.isfinite(lag):
        lag_days = int(lag)
    else:
        lag_days = int(lag_days_fallback)
    return input_key, output_key, mode, lag_days


def advance_promotion_state(
    previous: Optional[Mapping[str, Any]],
    candidate: Mapping[str, Any],
    date_key: str,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Tuple[Dict[str, Any], bool]:
    """Apply one run's sighting to a stored row.

    Returns ``(new_state, newly_surfaced)``.  Metadata absent from the
    candidate keeps its stored value.  Pure: no I/O, inputs not mutated.
    """
    prev = dict(previous or {})
    seen = int(prev.get("seen_count") or 0) + 1
    streak = int(prev.get("confirm_streak") or 0) + 1 if is_strong(candidate, config) else 0
    was_surfaced = prev.get("is_surfaced") is True

    state = dict(prev)
    state.update({
        "seen_count": seen,
        "confirm_streak": streak,
        "is_surfaced": was_surfaced,
        "last_seen_date_key": date_key,
        "direction": candidate.get("direction"),
        "strength": candidate.get("strength"),
        "updated_at": now,
    })
    if not prev.get("first_seen_date_key"):
        state["first_seen_date_key"] = date_key
    for cand_key, col in _METADATA_COLUMNS.items():
        if candidate.get(cand_key) is not None:
            state[col] = candidate[cand_key]

    newly = not was_surfaced and seen >= config.promote_min_seen and streak >= config.promote_min_streak
    if newly:
        state["is_surfaced"] = True
        state["surfaced_at"] = now
        state["surfaced_date_key"] = date_key
    return state, newly


def _row_to_api(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "inputKey": row.get("input_key"),
        "outputKey": row.get("output_key"),
        "mode": row.get("mode"),
        "lagDays": row.get("lag_days"),
        "direction": row.get("direction"),
        "strength": row.get("strength"),
        "n": row.get("n"),
        "nEvent": row.get("n_event"),
        "nNonEvent": row.get("n_non_event"),
        "meanEvent": row.get("mean_event"),
        "meanNonEvent": row.get("mean_non_event"),
        "threshold": row.get("threshold"),
        "delta": row.get("delta"),
        "seenCount": row.get("seen_count"),
        "confirmStreak": row.get("confirm_streak"),
        "isSurfaced": row.get("is_surfaced"),
        "surfacedAt": row.get("surfaced_at"),
        "surfacedDateKey": row.get("surfaced_date_key"),
        "firstSeenDateKey": row.get("first_seen_date_key"),
        "lastSeenDateKey": row.get("last_seen_date_key"),
    }


def clamp_list_limit(limit: Any) -> int:
    try:
        n = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIST_LIMIT
    return max(1, min(MAX_LIST_LIMIT, n))


class PromotionEngine:

    def __init__(self, conn_str: Optional[str] = None, config: EngineConfig = DEFAULT_CONFIG):
        self.conn_str = conn_str
        self.config = config

    def promote(self, user_id: str, date_key: str, candidates: Sequence[Any],
                lag_days: int = 1) -> PromotionSummary:
        if not isinstance(user_id, str) or not user_id.strip():
            raise AnalysisInputError("userId is required")
        if not is_valid_date_key(date_key):
            raise AnalysisInputError("dateKey is required (YYYY-MM-DD)")
        if not isinstance(candidates, (list, tuple)):
            raise AnalysisInputError("candidates must be an array")

        normalized = [n for n in (normalize_candidate(c) for c in candidates) if n is not None]
        summary = PromotionSummary(processed_count=len(normalized))
        if not normalized:
            return summary

        now = datetime.now(timezone.utc)
        try:
            conn = psycopg2.connect(resolve_conn_str(self.conn_str))
        except psycopg2.Error as e:
            raise PersistenceError(f"promotion connect failed: {e}") from e

        try:
            for cand in normalized:
                key = correlation_key(cand, lag_days)
                if not key[0] or not key[1]:
                    continue
                try:
                    if self._promote_one(conn, user_id.strip(), key, cand, date_key, now):
                        summary.newly_surfaced_count += 1
                    conn.commit()
                except psycopg2.Error as e:
                    conn.rollback()
                    log.exception("Promotion failed for user %s key %s", user_id, key)
                    raise PersistenceError(f"promotion failed: {e}") from e
        finally:
            conn.close()

        log.info("   Promotion for %s on %s: %d processed, %d newly surfaced",
                 user_id, date_key, summary.processed_count, summary.newly_surfaced_count)
        return summary

    def _promote_one(self, conn, user_id: str, key: Tuple[str, str, str, int],
                     cand: Mapping[str, Any], date_key: str, now: datetime) -> bool:
        input_key, output_key, mode, lag = key
        where = (user_id, input_key, output_key, mode, lag)
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""INSERT INTO {USER_CORRELATIONS_TABLE}
                   (user_id, input_key, output_key, mode, lag_days,
                    seen_count, confirm_streak, is_surfaced,
                    first_seen_date_key, last_seen_date_key,
                    direction, strength, created_at, updated_at)
                   VALUES (%s, %s, %s, %s, %s, 0, 0, FALSE, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (user_id, input_key, output_key, mode, lag_days) DO NOTHING""",
                where + (date_key, date_key, cand.get("direction"), cand.get("strength"), now, now),
            )
            cur.execute(
                f"""SELECT * FROM {USER_CORRELATIONS_TABLE}
                   WHERE user_id = %s AND input_key = %s AND output_key = %s
                     AND mode = %s AND lag_days = %s
                   FOR UPDATE""",
                where,
            )
            previous = cur.fetchone()
            state, newly = advance_promotion_state(previous, cand, date_key, now, self.config)

            assignments = ", ".join(f"{col} = %s" for col in _STATE_COLUMNS)
            cur.execute(
                f"""UPDATE {USER_CORRELATIONS_TABLE}
                   SET {assignments}, first_seen_date_key = %s, updated_at = %s
                   WHERE user_id = %s AND input_key = %s AND output_key = %s
                     AND mode = %s AND lag_days = %s""",
                tuple(state.get(col) for col in _STATE_COLUMNS)
                + (state.get("first_seen_date_key"), now)
                + where,
            )
        return newly

    def list_correlations(self, user_id: str, surfaced_only: bool = True,
                          limit: Any = DEFAULT_LIST_LIMIT,
                          include_all: bool = False) -> List[Dict[str, Any]]:
        """Surfaced (or all) correlations, newest surfacing first."""
        if not isinstance(user_id, str) or not user_id.strip():
            raise AnalysisInputError("userId is required")
        only_surfaced = bool(surfaced_only) and not include_all
        n = clamp_list_limit(limit)

        surfaced_clause = "AND is_surfaced = TRUE" if only_surfaced else ""
        conn = psycopg2.connect(resolve_conn_str(self.conn_str))
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""SELECT * FROM {USER_CORRELATIONS_TABLE}
                       WHERE user_id = %s
                         AND COALESCE(input_key, '') <> ''
                         AND COALESCE(output_key, '') <> ''
                         {surfaced_clause}
                       ORDER BY surfaced_at DESC NULLS LAST, ABS(strength) DESC
                       LIMIT %s""",
                    (user_id.strip(), n),
                )
                rows = cur.fetchall()
        finally:
            conn.close()
        return [_row_to_api(r) for r in rows]
