"""Lag-pair construction: day-T inputs aligned with day-(T+lag) outcomes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from analytics.stats import is_finite_number
from constants import INGREDIENT_PREFIX, OUTCOME_KEYS
from daily_records import DailyRecord, add_days

_WS_RE = re.compile(r"\s+")
_QUOTE_MAP = str.maketrans({"“": '"', "”": '"', "’": "'"})

# Window diagnostics readiness: nutrition must be positive, weather only finite
_INPUT_SIGNAL_KEYS = ("energy_kcal", "protein_g", "carbs_g", "fat_g")
_INPUT_CONTEXT_KEYS = ("weather_temp_c",)
_OUTPUT_SIGNAL_KEYS = OUTCOME_KEYS + ("checkin_outside_minutes", "checkin_exercise")


@dataclass
class LagPair:
    x: Dict[str, float]
    y: Dict[str, float]
    date_key_x: str
    date_key_y: str


class FeatureKeyCache:
    """Per-run memo of normalized ingredient keys.

    One instance is created per engine run and passed to extraction, so
    runs never share state.
    """

    def __init__(self) -> None:
        self._keys: Dict[str, str] = {}
        self.hits = 0

    def ingredient_key(self, raw: Any) -> str:
        raw_s = str(raw or "")
        if raw_s in self._keys:
            self.hits += 1
            return self._keys[raw_s]
        key = _WS_RE.sub(" ", raw_s.strip().lower()).translate(_QUOTE_MAP)
        self._keys[raw_s] = key
        return key


def is_outcome_key(key: str) -> bool:
    return key in OUTCOME_KEYS


def ingredient_exposure_features(exposure: Optional[Mapping[str, Any]],
                                 cache: FeatureKeyCache) -> Dict[str, float]:
    """Ingredient exposures as namespaced input features (raw counts)."""
    out: Dict[str, float] = {}
    for raw_key, raw_val in (exposure or {}).items():
        key = cache.ingredient_key(raw_key)
        if not key or not is_finite_number(raw_val):
            continue
        out[f"{INGREDIENT_PREFIX}{key}"] = float(raw_val)
    return out


def extract_day_inputs(record: DailyRecord, cache: FeatureKeyCache) -> Dict[str, float]:
    x: Dict[str, float] = {}
    for key, val in (record.totals or {}).items():
        if not key or not isinstance(key, str) or is_outcome_key(key):
            continue
        if is_finite_number(val):
            x[key] = float(val)
    x.update(ingredient_exposure_features(record.ingredients_exposure, cache))
    return x


def extract_day_outcomes(record: DailyRecord) -> Dict[str, float]:
    totals = record.totals or {}
    return {k: float(totals[k]) for k in OUTCOME_KEYS if is_finite_number(totals.get(k))}


def build_lag_pairs(records: Sequence[DailyRecord], lag_days: int = 1,
                    cache: Optional[FeatureKeyCache] = None) -> List[LagPair]:
    """Pair record i (inputs) with record i+lag (outcomes).

    *records* must already be sorted ascending by dateKey.  Pairs where
    either side extracts nothing are dropped, never zero-filled.
    """
    lag = max(1, int(lag_days or 1))
    cache = cache or FeatureKeyCache()
    pairs: List[LagPair] = []
    for i in range(len(records) - lag):
        rec_x = records[i]
        rec_y = records[i + lag]
        x = extract_day_inputs(rec_x, cache)
        if not x:
            continue
        y = extract_day_outcomes(rec_y)
        if not y:
            continue
        pairs.append(LagPair(x=x, y=y, date_key_x=rec_x.date_key, date_key_y=rec_y.date_key))
    return pairs


def pairs_to_frames(pairs: Sequence[LagPair]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Inputs and outcomes as aligned frames (one row per pair, NaN = absent)."""
    index = [p.date_key_x for p in pairs]
    X = pd.DataFrame.from_records([p.x for p in pairs], index=index).astype("float64")
    Y = pd.DataFrame.from_records([p.y for p in pairs], index=index).astype("float64")
    for col in OUTCOME_KEYS:
        if col not in Y.columns:
            Y[col] = float("nan")
    return X, Y[list(OUTCOME_KEYS)]


def _has_signal(totals: Mapping[str, Any], keys: Sequence[str], positive: bool) -> bool:
    for k in keys:
        v = totals.get(k)
        if is_finite_number(v) and (not positive or float(v) > 0):
            return True
    return False


def describe_lag_window(records: Sequence[DailyRecord], lag_days: int = 1) -> Dict[str, Any]:
    """Per-day readiness and calendar-offset pairs for a window of records.

    Pairs here are joined on ``dateKey + lag`` (calendar), unlike
    ``build_lag_pairs`` which pairs by position; the difference shows which
    pairs a gap in logging breaks.
    """
    lag = max(0, int(lag_days or 0))
    by_key = {r.date_key: r for r in records}
    keys = sorted(by_key)

    days = []
    for k in keys:
        totals = by_key[k].totals or {}
        days.append({
            "dateKey": k,
            "hasInput": (_has_signal(totals, _INPUT_SIGNAL_KEYS, positive=True)
                         or _has_signal(totals, _INPUT_CONTEXT_KEYS, positive=False)),
            "hasOutput": _has_signal(totals, _OUTPUT_SIGNAL_KEYS, positive=False),
            "mood": totals.get("checkin_mood"),
            "painPeak": totals.get("checkin_pain_peak"),
            "clarity": totals.get("checkin_clarity_score"),
            "energy_kcal": totals.get("energy_kcal"),
        })

    ready = {d["dateKey"]: d for d in days}
    pairs = []
    for k in keys:
        k_out = add_days(k, lag)
        if k_out not in by_key:
            continue
        in_ok = ready[k]["hasInput"]
        out_ok = ready[k_out]["hasOutput"]
        pairs.append({
            "inputDateKey": k,
            "outputDateKey": k_out,
            "inOk": in_ok,
            "outOk": out_ok,
            "ok": in_ok and out_ok,
        })

    return {
        "lagDays": lag,
        "dayCount": len(days),
        "pairCount": len(pairs),
        "okPairCount": sum(1 for p in pairs if p["ok"]),
        "days": days,
        "pairs": pairs,
    }
