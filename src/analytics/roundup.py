"""
Daily Roundup Generator
=======================
Classifies one day's nutrient totals against resolved targets.

Bucket order (first match wins):
  over_limit   actual > upper_limit
  over_safe    actual > upper_safe
  high         pct >= 1.20, or pct >= 1.00 on an untrusted day
  met          actual >= goal
  low          pct < 0.80 on a trusted day
  ok           everything else (not emitted)

Cap-only nutrients (a safety cap but no goal, e.g. caffeine) only ever land
in the two cap buckets.  A day is "trusted" when logged energy covers at
least 60% of the energy goal; "low" is never flagged on an untrusted day.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from config import DEFAULT_CONFIG, EngineConfig
from constants import (
    BUCKET_HIGH,
    BUCKET_LOW,
    BUCKET_MET,
    BUCKET_OK,
    BUCKET_OVER_LIMIT,
    BUCKET_OVER_SAFE,
    KCAL_TO_KJ,
    ROUNDUP_OUTPUT_KEY,
)
from daily_records import DailyRecord
from nutrient_aliases import canonical_key, canonicalize_totals
from nutrient_targets import NutrientBand

log = logging.getLogger("roundup")

ENERGY_KEY = "energy_kcal"
ENERGY_KJ_KEY = "energy_kj"
KCAL_PER_G = {"sugars_g": 4.0, "protein_g": 4.0, "fat_g": 9.0}


@dataclass
class RoundupResult:
    date_key: str
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    coverage: float = 0.0
    is_trusted_day: bool = False
    energy_logged: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dateKey": self.date_key,
            "candidates": self.candidates,
            "coverage": self.coverage,
            "isTrustedDay": self.is_trusted_day,
            "energyLogged": self.energy_logged,
        }


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    v = float(value)
    return v if math.isfinite(v) and v > 0 else None


def energy_coverage(energy_logged: float, energy_goal: Optional[float],
                    cap: float = 3.0) -> float:
    goal = _positive(energy_goal)
    if goal is None:
        return 0.0
    return max(0.0, min(cap, energy_logged / goal))


def classify_bucket(actual: float, goal: Optional[float], pct_goal: float,
                    upper_safe: Optional[float], upper_limit: Optional[float],
                    trusted: bool, config: EngineConfig = DEFAULT_CONFIG) -> str:
    if upper_limit is not None and actual > upper_limit:
        return BUCKET_OVER_LIMIT
    if upper_safe is not None and actual > upper_safe:
        return BUCKET_OVER_SAFE
    if goal is None:
        return BUCKET_OK
    if pct_goal >= config.high_pct or (pct_goal >= 1.0 and not trusted):
        return BUCKET_HIGH
    if actual >= goal:
        return BUCKET_MET
    if pct_goal < config.low_pct and trusted:
        return BUCKET_LOW
    return BUCKET_OK


def _candidate(input_key: str, value: float, goal: float, pct_goal: float, bucket: str,
               coverage: float, trusted: bool, band: Optional[NutrientBand] = None) -> Dict[str, Any]:
    strength = pct_goal - 1.0
    cand: Dict[str, Any] = {
        "inputKey": input_key,
        "outputKey": ROUNDUP_OUTPUT_KEY,
        "direction": "positive" if strength >= 0 else "negative",
        "strength": strength,
        "value": value,
        "goal": goal,
        "pctGoal": pct_goal,
        "bucket": bucket,
        "coverage": coverage,
        "isTrustedDay": trusted,
    }
    if band is not None:
        cand.update({
            "lowerSafe": band.lower_safe,
            "upperSafe": band.upper_safe,
            "upperLimit": band.upper_limit,
            "unit": band.unit,
            "referenceType": band.reference_type,
        })
    return cand


def _macro_flags(amounts: Mapping[str, float], energy_logged: float, coverage: float,
                 trusted: bool, config: EngineConfig) -> List[Dict[str, Any]]:
    if energy_logged < config.macro_min_energy_kcal:
        return []

    def ratio(key: str) -> Optional[float]:
        if key not in amounts:
            return None
        return amounts[key] * KCAL_PER_G[key] / energy_logged

    out: List[Dict[str, Any]] = []
    sugar = ratio("sugars_g")
    if sugar is not None and sugar >= config.sugar_energy_ratio_high:
        th = config.sugar_energy_ratio_high
        out.append(_candidate("macro_sugar_energy_ratio", sugar, th, sugar / th,
                              BUCKET_HIGH, coverage, trusted))
    protein = ratio("protein_g")
    if protein is not None and protein <= config.protein_energy_ratio_low and trusted:
        th = config.protein_energy_ratio_low
        out.append(_candidate("macro_protein_energy_ratio", protein, th, protein / th,
                              BUCKET_LOW, coverage, trusted))
    fat = ratio("fat_g")
    if fat is not None and fat >= config.fat_energy_ratio_high:
        th = config.fat_energy_ratio_high
        out.append(_candidate("macro_fat_energy_ratio", fat, th, fat / th,
                              BUCKET_HIGH, coverage, trusted))
    return out


def _fill_energy_units(amounts: Dict[str, float]) -> None:
    """Derive whichever of kcal/kJ is missing so both energy goals see the same intake."""
    if ENERGY_KEY in amounts and ENERGY_KJ_KEY not in amounts:
        amounts[ENERGY_KJ_KEY] = amounts[ENERGY_KEY] * KCAL_TO_KJ
    elif ENERGY_KJ_KEY in amounts and ENERGY_KEY not in amounts:
        amounts[ENERGY_KEY] = amounts[ENERGY_KJ_KEY] / KCAL_TO_KJ


def build_daily_roundup(record: DailyRecord, goals: Mapping[str, Any],
                        bands: Mapping[str, NutrientBand],
                        config: EngineConfig = DEFAULT_CONFIG) -> RoundupResult:
    """Flag one day's nutrients against goals and safety caps."""
    confirmed = canonicalize_totals(record.totals)
    estimated = canonicalize_totals(record.totals_estimated)
    amounts: Dict[str, float] = dict(confirmed)
    for k, v in estimated.items():
        amounts[k] = amounts.get(k, 0.0) + v
    _fill_energy_units(amounts)

    goal_map: Dict[str, float] = {}
    for k, v in (goals or {}).items():
        g = _positive(v)
        if g is not None:
            goal_map[canonical_key(k)] = g

    energy_logged = amounts.get(ENERGY_KEY, 0.0)
    coverage = energy_coverage(energy_logged, goal_map.get(ENERGY_KEY), config.coverage_cap)
    trusted = coverage >= config.trust_coverage_min

    result = RoundupResult(
        date_key=record.date_key,
        coverage=coverage,
        is_trusted_day=trusted,
        energy_logged=energy_logged,
    )

    capped = {k for k, b in (bands or {}).items() if b.has_cap}
    for key in sorted(set(goal_map) | capped):
        band = (bands or {}).get(key)
        goal = goal_map.get(key)
        upper_safe = _positive(band.upper_safe) if band else None
        upper_limit = _positive(band.upper_limit) if band else None
        goal_value = goal if goal is not None else (upper_safe or upper_limit)
        if goal_value is None:
            continue

        actual = amounts.get(key, 0.0)
        pct_goal = actual / goal_value
        bucket = classify_bucket(actual, goal, pct_goal, upper_safe, upper_limit, trusted, config)
        if bucket == BUCKET_OK:
            continue
        result.candidates.append(
            _candidate(key, actual, goal_value, pct_goal, bucket, coverage, trusted, band)
        )

    result.candidates.extend(_macro_flags(amounts, energy_logged, coverage, trusted, config))
    log.debug(
        "Roundup %s: coverage=%.2f trusted=%s flags=%d",
        record.date_key, coverage, trusted, len(result.candidates),
    )
    return result
