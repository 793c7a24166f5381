"""Per-user analysis run: daily roundup + lag-1 correlations + promotion.

The roundup pass and the correlation pass are independent; a failure or an
insufficient-data outcome in one never blocks the other.  Both outcomes are
reported through ``analysis_status`` / ``degraded_reasons``.

Usage:
    python -m pipeline.user_analysis --user <id>
    python -m pipeline.user_analysis --user <id> --backfill --window-days 60
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from typing import Any, Dict, List, Optional

import psycopg2

from analytics.lag_pairs import FeatureKeyCache, build_lag_pairs
from analytics.roundup import build_daily_roundup
from config import DEFAULT_CONFIG, EngineConfig
from constants import CORRELATION_ENGINE_VERSION, ROUNDUP_VERSION
from correlation_engine import STATUS_INSUFFICIENT, CorrelationEngine
from daily_records import DailyRecord, fetch_daily_records, fetch_limit, fetch_user_profile
from db_utils import get_conn_str
from errors import AnalysisInputError, PersistenceError
from nutrient_targets import resolve_targets
from pack_store import CorrelationPackStore
from pipeline.migrations import ensure_startup_schema
from promotion import PromotionEngine

log = logging.getLogger("user_analysis")

DEFAULT_WINDOW_DAYS = 120
DEFAULT_LAG_DAYS = 1
DEFAULT_MIN_SUPPORT_DAYS = 4
DEFAULT_TOP_K = 150
TOP_RESPONSE_LIMIT = 50


def _int_in_range(value: Any, lo: int, hi: int, default: int, lo_exclusive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    v = int(value)
    if (v <= lo if lo_exclusive else v < lo) or v > hi:
        return default
    return v


def normalize_run_params(window_days: Any = DEFAULT_WINDOW_DAYS, lag_days: Any = DEFAULT_LAG_DAYS,
                         min_support_days: Any = DEFAULT_MIN_SUPPORT_DAYS,
                         top_k: Any = DEFAULT_TOP_K) -> Dict[str, int]:
    """Out-of-range or non-numeric values fall back to the defaults."""
    return {
        "window_days": _int_in_range(window_days, 7, 365, DEFAULT_WINDOW_DAYS, lo_exclusive=True),
        "lag_days": _int_in_range(lag_days, 1, 14, DEFAULT_LAG_DAYS),
        "min_support_days": _int_in_range(min_support_days, 2, 30, DEFAULT_MIN_SUPPORT_DAYS),
        "top_k": _int_in_range(top_k, 10, 500, DEFAULT_TOP_K),
    }


class UserAnalysisPipeline:
    """Runs one user's analysis end to end."""

    def __init__(
        self,
        conn_str: Optional[str] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        engine: Optional[CorrelationEngine] = None,
        pack_store: Optional[CorrelationPackStore] = None,
        promoter: Optional[PromotionEngine] = None,
    ):
        self.conn_str = conn_str or get_conn_str()
        self.config = config
        self.engine = engine or CorrelationEngine(config)
        self.pack_store = pack_store or CorrelationPackStore(self.conn_str)
        self.promoter = promoter or PromotionEngine(self.conn_str, config)

    def run_analysis(
        self,
        user_id: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        lag_days: int = DEFAULT_LAG_DAYS,
        min_support_days: int = DEFAULT_MIN_SUPPORT_DAYS,
        top_k: int = DEFAULT_TOP_K,
        backfill_roundups: bool = False,
    ) -> Dict[str, Any]:
        """Run both passes and return the structured result.

        Raises AnalysisInputError for a missing user id and PersistenceError
        when a store/promote write failed (after the other pass has run).
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise AnalysisInputError("Missing userId")
        uid = user_id.strip()
        params = normalize_run_params(window_days, lag_days, min_support_days, top_k)

        result: Dict[str, Any] = {
            "userId": uid,
            "windowDays": params["window_days"],
            "lagDays": params["lag_days"],
            "storedCount": 0,
            "promotedCount": 0,
            "top": [],
            "dateKey": None,
            "roundup": {
                "storedCount": 0,
                "dateKey": None,
                "backfilledDays": 0,
                "coverage": None,
                "isTrustedDay": None,
            },
            "analysis_status": "success",
            "degraded_reasons": [],
        }

        log.info("Analysis for user %s (window=%d, lag=%d, support=%d, topK=%d)",
                 uid, params["window_days"], params["lag_days"],
                 params["min_support_days"], params["top_k"])

        records = self._load_records(uid, fetch_limit(params["window_days"], params["lag_days"]))
        errors: List[Exception] = []

        try:
            self._roundup_pass(uid, records, params["window_days"], backfill_roundups, result)
        except Exception as e:
            log.exception("Roundup pass failed for user %s", uid)
            result["degraded_reasons"].append("roundup_exception")
            errors.append(e)

        try:
            self._correlation_pass(uid, records, params, result)
        except Exception as e:
            log.exception("Correlation pass failed for user %s", uid)
            result["degraded_reasons"].append("correlation_exception")
            errors.append(e)

        result["analysis_status"] = self._overall_status(result["degraded_reasons"])
        log.info("Analysis for user %s finished: status=%s stored=%d promoted=%d",
                 uid, result["analysis_status"], result["storedCount"], result["promotedCount"])

        for e in errors:
            if isinstance(e, PersistenceError):
                raise e
        return result

    def _load_records(self, user_id: str, limit: int) -> List[DailyRecord]:
        try:
            return fetch_daily_records(self.conn_str, user_id, limit)
        except psycopg2.Error as e:
            log.exception("Failed to load daily records for user %s", user_id)
            raise PersistenceError(f"daily records load failed: {e}") from e

    # ─── Roundup ──────────────────────────────────────────────

    def _roundup_pass(self, user_id: str, records: List[DailyRecord], window_days: int,
                      backfill: bool, result: Dict[str, Any]) -> None:
        if not records:
            result["degraded_reasons"].append("no_daily_records")
            return

        profile = fetch_user_profile(self.conn_str, user_id)
        targets = resolve_targets(
            profile.get("age"), profile.get("sex"),
            profile_key=profile.get("profile_key") or self.config.dri_profile_key,
            overrides=profile.get("overrides"),
        )
        if targets.used_fallback:
            result["degraded_reasons"].append("fallback_targets")

        days = records[-window_days:] if backfill else records[-1:]
        latest = None
        latest_stored = 0
        for rec in days:
            roundup = build_daily_roundup(rec, targets.goals, targets.bands, self.config)
            latest_stored = self.pack_store.store(
                user_id, rec.date_key, ROUNDUP_VERSION, roundup.candidates, {},
            )
            latest = roundup

        result["roundup"] = {
            "storedCount": latest_stored,
            "dateKey": latest.date_key,
            "backfilledDays": len(days) if backfill else 0,
            "coverage": latest.coverage,
            "isTrustedDay": latest.is_trusted_day,
        }

    # ─── Correlations + promotion ─────────────────────────────

    def _correlation_pass(self, user_id: str, records: List[DailyRecord],
                          params: Dict[str, int], result: Dict[str, Any]) -> None:
        cache = FeatureKeyCache()
        pairs = build_lag_pairs(records, params["lag_days"], cache)
        engine_result = self.engine.compute_candidates(
            pairs,
            lag_days=params["lag_days"],
            min_support_days=params["min_support_days"],
            top_k=params["top_k"],
        )
        log.debug("   Ingredient key cache hits: %d", cache.hits)

        if engine_result.status == STATUS_INSUFFICIENT:
            result["message"] = engine_result.message
            result["degraded_reasons"].append("insufficient_lag_pairs")
            return

        date_key = engine_result.date_key
        candidates = engine_result.candidates
        result["dateKey"] = date_key
        result["top"] = candidates[:TOP_RESPONSE_LIMIT]
        result["storedCount"] = self.pack_store.store(
            user_id, date_key, CORRELATION_ENGINE_VERSION, candidates,
            {"windowDays": params["window_days"], "lagDays": params["lag_days"]},
        )
        if result["top"]:
            summary = self.promoter.promote(user_id, date_key, result["top"], params["lag_days"])
            result["promotedCount"] = summary.newly_surfaced_count

    @staticmethod
    def _overall_status(degraded_reasons: List[str]) -> str:
        failed = {"roundup_exception", "correlation_exception"}
        hit = failed.intersection(degraded_reasons)
        if len(hit) == len(failed):
            return "failed"
        if degraded_reasons:
            return "degraded"
        return "success"


def run_analysis_best_effort(user_id: str, pipeline: Optional[UserAnalysisPipeline] = None,
                             **kwargs: Any) -> Optional[Dict[str, Any]]:
    """Fire-and-forget wrapper: never raises, logs every failure."""
    try:
        return (pipeline or UserAnalysisPipeline()).run_analysis(user_id, **kwargs)
    except Exception:
        log.exception("Best-effort analysis failed for user %s", user_id)
        return None


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = argparse.ArgumentParser(description="Nutrition roundup + lag-1 correlation run")
    parser.add_argument("--user", required=True, help="User id to analyze")
    parser.add_argument("--window-days", type=int, default=DEFAULT_WINDOW_DAYS,
                        help=f"History window in days (default: {DEFAULT_WINDOW_DAYS})")
    parser.add_argument("--lag-days", type=int, default=DEFAULT_LAG_DAYS,
                        help="Input→outcome lag in days (default: 1)")
    parser.add_argument("--min-support-days", type=int, default=DEFAULT_MIN_SUPPORT_DAYS,
                        help="Minimum days an input must be logged (default: 4)")
    parser.add_argument("--top-k", type=int, default=DEFAULT_TOP_K,
                        help="Candidates kept per (outcome, mode) group (default: 150)")
    parser.add_argument("--backfill", action="store_true",
                        help="Store roundups for every day in the window")
    parser.add_argument("--skip-migrations", action="store_true",
                        help="Do not run startup migrations first")
    args = parser.parse_args()

    if not args.skip_migrations:
        try:
            ensure_startup_schema()
        except (RuntimeError, psycopg2.Error) as e:
            log.error("Startup migrations failed: %s", e)
            return 1

    try:
        result = UserAnalysisPipeline().run_analysis(
            args.user,
            window_days=args.window_days,
            lag_days=args.lag_days,
            min_support_days=args.min_support_days,
            top_k=args.top_k,
            backfill_roundups=args.backfill,
        )
    except AnalysisInputError as e:
        log.error("Invalid input: %s", e)
        return 2
    except PersistenceError as e:
        log.error("Persistence failure: %s", e)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0 if result["analysis_status"] != "failed" else 1


if __name__ == "__main__":
    sys.exit(main())
