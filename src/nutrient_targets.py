"""
Target Resolver
===============
Resolves a user's per-nutrient daily goals and safety bands from a
versioned reference dataset.

Goal layers, lowest precedence first:
  1. FALLBACK_GOALS          hardcoded defaults
  2. dataset goals           bands matching the user's age/sex
  3. user overrides          explicit profile values

Layers are combined by ``merge_goal_layers``: rightmost wins, entries that
are non-finite or <= 0 are dropped.  Resolution never raises; anything
missing degrades to the fallback layer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from config import DEFAULT_CONFIG
from reference import get_dri_dataset

log = logging.getLogger("nutrient_targets")

MIN_AGE_YEARS = 0
MAX_AGE_YEARS = 120

# Label-style daily values for a 2000 kcal adult; used when resolution fails.
FALLBACK_GOALS: Dict[str, float] = {
    "energy_kcal": 2000,
    "protein_g": 50,
    "carbs_g": 275,
    "fat_g": 78,
    "fiber_g": 28,
    "water_total_ml": 2700,
    "vitamin_c_mg": 90,
    "calcium_mg": 1300,
    "iron_mg": 18,
    "magnesium_mg": 420,
    "potassium_mg": 4700,
}

_SEX_ALIASES = {
    "male": "male", "m": "male", "man": "male",
    "female": "female", "f": "female", "woman": "female",
}


@dataclass(frozen=True)
class NutrientBand:
    nutrient_key: str
    sex: Optional[str]
    min_years: float
    max_years: Optional[float]
    recommended: Optional[float] = None
    lower_safe: Optional[float] = None
    upper_safe: Optional[float] = None
    upper_limit: Optional[float] = None
    unit: Optional[str] = None
    reference_type: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NutrientBand":
        return cls(
            nutrient_key=str(row["nutrient_key"]),
            sex=row.get("sex"),
            min_years=float(row.get("min_years") or 0),
            max_years=row.get("max_years"),
            recommended=row.get("recommended"),
            lower_safe=row.get("lower_safe"),
            upper_safe=row.get("upper_safe"),
            upper_limit=row.get("upper_limit"),
            unit=row.get("unit"),
            reference_type=row.get("reference_type"),
            source=row.get("source"),
        )

    def applies_to(self, age: float, sex: Optional[str]) -> bool:
        if self.sex is not None and self.sex != sex:
            return False
        if age < self.min_years:
            return False
        return self.max_years is None or age <= self.max_years

    @property
    def has_cap(self) -> bool:
        return _positive(self.upper_safe) is not None or _positive(self.upper_limit) is not None


@dataclass
class ResolvedTargets:
    goals: Dict[str, float] = field(default_factory=dict)
    bands: Dict[str, NutrientBand] = field(default_factory=dict)
    profile_key: Optional[str] = None
    used_fallback: bool = False


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


def normalize_sex(sex: Any) -> Optional[str]:
    return _SEX_ALIASES.get(str(sex or "").strip().lower())


def clamp_age(age: Any) -> Optional[float]:
    if isinstance(age, bool):
        return None
    try:
        a = float(age)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(a):
        return None
    return max(MIN_AGE_YEARS, min(MAX_AGE_YEARS, a))


def merge_goal_layers(layers: Sequence[Optional[Mapping[str, Any]]]) -> Dict[str, float]:
    """Combine goal maps in order; later layers win, invalid entries dropped.

    An invalid entry in a later layer does not erase a valid value from an
    earlier one.
    """
    merged: Dict[str, float] = {}
    for layer in layers:
        for key, raw in (layer or {}).items():
            v = _positive(raw)
            if v is None or not key:
                continue
            merged[str(key)] = v
    return merged


def override_layer(overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Flatten ``{key: {value, unit}}`` (or bare numbers) to ``{key: value}``."""
    out: Dict[str, Any] = {}
    for key, entry in (overrides or {}).items():
        if isinstance(entry, Mapping):
            out[key] = entry.get("value")
        else:
            out[key] = entry
    return out


def resolve_bands(bands: Iterable[NutrientBand], age: float, sex: Optional[str]) -> Dict[str, NutrientBand]:
    """Pick one band per nutrient; a sex-specific match beats a sex-agnostic one."""
    picked: Dict[str, NutrientBand] = {}
    for band in bands:
        if not band.applies_to(age, sex):
            continue
        current = picked.get(band.nutrient_key)
        if current is None or (current.sex is None and band.sex is not None):
            picked[band.nutrient_key] = band
    return picked


def goals_from_bands(bands: Mapping[str, NutrientBand]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, band in bands.items():
        rec = _positive(band.recommended)
        if rec is not None:
            out[key] = rec
    return out


def resolve_targets(
    age: Any,
    sex: Any,
    profile_key: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ResolvedTargets:
    """Resolve goals and bands for one user.  Pure; never raises."""
    profile_key = profile_key or DEFAULT_CONFIG.dri_profile_key
    user_layer = override_layer(overrides)

    try:
        dataset = get_dri_dataset(profile_key)
        age_years = clamp_age(age)
        sex_norm = normalize_sex(sex)
        if dataset is None:
            raise LookupError(f"unknown reference dataset {profile_key!r}")
        if age_years is None or sex_norm is None:
            raise LookupError("profile is missing age or sex")

        rows: List[NutrientBand] = [NutrientBand.from_row(r) for r in dataset["bands"]]
        bands = resolve_bands(rows, age_years, sex_norm)
        goals = merge_goal_layers([FALLBACK_GOALS, goals_from_bands(bands), user_layer])
        return ResolvedTargets(goals=goals, bands=bands, profile_key=profile_key, used_fallback=False)
    except Exception as e:
        log.warning("Target resolution degraded to fallback goals: %s", e)
        goals = merge_goal_layers([FALLBACK_GOALS, user_layer])
        return ResolvedTargets(goals=goals, bands={}, profile_key=profile_key, used_fallback=True)
