"""
Reference intake bands, dataset ``dri_v1``.

Rows are plain dicts so the table stays data; ``nutrient_targets`` turns
them into ``NutrientBand`` objects.  Energy rows are heuristic maintenance
targets (not EER); fat rows assume a 2000 kcal day.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from constants import KCAL_TO_KJ

DRI_V1_PROFILE_KEY = "dri_v1"
DRI_V1_VERSION = 1


def _band(
    key: str,
    sex: Optional[str],
    min_years: float,
    max_years: Optional[float],
    reference_type: str,
    recommended: Optional[float],
    lower_safe: Optional[float],
    upper_safe: Optional[float],
    upper_limit: Optional[float],
    unit: str,
    source: str = "DRI",
) -> Dict[str, Any]:
    return {
        "nutrient_key": key,
        "sex": sex,
        "min_years": min_years,
        "max_years": max_years,
        "reference_type": reference_type,
        "recommended": recommended,
        "lower_safe": lower_safe,
        "upper_safe": upper_safe,
        "upper_limit": upper_limit,
        "unit": unit,
        "source": source,
    }


def _info(key: str, unit: str) -> Dict[str, Any]:
    return _band(key, None, 19, None, "ai", None, None, None, None, unit,
                 source="Informational tracking (no DRI target)")


# (sex, min, max, recommended, lower_safe, upper_safe) in kcal
_ENERGY_KCAL = [
    ("male", 19, 30, 2600, 1900, 3600),
    ("male", 31, 50, 2400, 1800, 3400),
    ("male", 51, 70, 2200, 1700, 3200),
    ("male", 71, None, 2000, 1600, 3000),
    ("female", 19, 30, 2000, 1500, 3000),
    ("female", 31, 50, 1800, 1400, 2800),
    ("female", 51, 70, 1700, 1300, 2600),
    ("female", 71, None, 1600, 1200, 2400),
]


def _energy_rows() -> List[Dict[str, Any]]:
    rows = []
    for sex, lo_y, hi_y, rec, low, up in _ENERGY_KCAL:
        rows.append(_band("energy_kcal", sex, lo_y, hi_y, "ai", rec, low, up, None, "kcal",
                          source="Heuristic maintenance target"))
    for sex, lo_y, hi_y, rec, low, up in _ENERGY_KCAL:
        rows.append(_band("energy_kj", sex, lo_y, hi_y, "ai",
                          round(rec * KCAL_TO_KJ, 1), round(low * KCAL_TO_KJ, 1),
                          round(up * KCAL_TO_KJ, 1), None, "kJ",
                          source="Heuristic maintenance target (kcal x 4.184)"))
    return rows


_MACROS = [
    _band("carbs_g", None, 19, None, "rda", 130, 104, None, None, "g"),
    _band("protein_g", "male", 19, 50, "rda", 56, 45, None, None, "g"),
    _band("protein_g", "female", 19, 50, "rda", 46, 37, None, None, "g"),
    _band("fat_g", None, 19, None, "ai", 65, 44, 78, None, "g", source="AMDR (assumes 2000 kcal)"),
    _band("sat_fat_g", None, 19, None, "ai", 22, 0, 22, None, "g", source="Guideline cap (assumes 2000 kcal)"),
    _band("trans_fat_g", None, 19, None, "ai", None, None, 2, None, "g", source="Guideline (as low as possible)"),
    _band("mono_fat_g", None, 19, None, "ai", 33, 20, 44, None, "g", source="Heuristic (assumes 2000 kcal)"),
    _band("poly_fat_g", None, 19, None, "ai", 22, 12, 33, None, "g", source="Heuristic (assumes 2000 kcal)"),
    _band("pufa_18_2_g", "male", 19, None, "ai", 17, 14, None, None, "g"),
    _band("pufa_18_2_g", "female", 19, None, "ai", 12, 10, None, None, "g"),
    _band("pufa_18_3_g", "male", 19, None, "ai", 1.6, 1.28, None, None, "g"),
    _band("pufa_18_3_g", "female", 19, None, "ai", 1.1, 0.88, None, None, "g"),
    _band("added_sugars_g", None, 19, None, "ai", None, None, 50, None, "g",
          source="Guideline cap (<10% of calories as added sugars)"),
    _band("fiber_g", "male", 19, 50, "ai", 38, 30, None, None, "g"),
    _band("fiber_g", "female", 19, 50, "ai", 25, 20, None, None, "g"),
    _band("water_total_ml", "male", 19, None, "ai", 3700, 3000, None, None, "ml"),
    _band("water_total_ml", "female", 19, None, "ai", 2700, 2200, None, None, "ml"),
    _band("sleep_hours", None, 19, None, "ai", 8, 7, 9, None, "h",
          source="Consensus guideline (7-9 hours per night for adults)"),
]

# key -> (unit, reference_type, male (rec, lower, upper_safe, upper_limit), female (...))
_MICROS_ADULT = {
    "vitamin_a_rae_ug": ("µg", "rda", (900, 720, 3000, 3000), (700, 560, 3000, 3000)),
    "vitamin_c_mg": ("mg", "rda", (90, 72, 2000, 2000), (75, 60, 2000, 2000)),
    "vitamin_b1_mg": ("mg", "rda", (1.2, 1.0, None, None), (1.1, 0.9, None, None)),
    "vitamin_b2_mg": ("mg", "rda", (1.3, 1.04, None, None), (1.1, 0.88, None, None)),
    "vitamin_b3_mg": ("mg", "rda", (16, 12.8, 35, 35), (14, 11.2, 35, 35)),
    "vitamin_b5_mg": ("mg", "ai", (5, 4, None, None), (5, 4, None, None)),
    "vitamin_b6_mg": ("mg", "rda", (1.3, 1.0, 100, 100), (1.3, 1.0, 100, 100)),
    "vitamin_b7_ug": ("µg", "ai", (30, 24, None, None), (30, 24, None, None)),
    "vitamin_b12_ug": ("µg", "rda", (2.4, 1.9, None, None), (2.4, 1.9, None, None)),
    "folate_dfe_ug": ("µg", "rda", (400, 320, 1000, 1000), (400, 320, 1000, 1000)),
    "vitamin_d_ug": ("µg", "rda", (15, 12, 100, 100), (15, 12, 100, 100)),
    "vitamin_e_mg": ("mg", "rda", (15, 12, 1000, 1000), (15, 12, 1000, 1000)),
    "vitamin_k_ug": ("µg", "ai", (120, 100, None, None), (90, 75, None, None)),
    "potassium_mg": ("mg", "ai", (3400, 2720, None, None), (2600, 2080, None, None)),
    "phosphorus_mg": ("mg", "rda", (700, 560, 4000, 4000), (700, 560, 4000, 4000)),
    "zinc_mg": ("mg", "rda", (11, 8.8, 40, 40), (8, 6.4, 40, 40)),
    "copper_mg": ("mg", "rda", (0.9, 0.72, 10, 10), (0.9, 0.72, 10, 10)),
    "selenium_ug": ("µg", "rda", (55, 44, 400, 400), (55, 44, 400, 400)),
    "manganese_mg": ("mg", "ai", (2.3, 1.84, 11, 11), (1.8, 1.44, 11, 11)),
    "iodine_ug": ("µg", "rda", (150, 120, 1100, 1100), (150, 120, 1100, 1100)),
    "chromium_ug": ("µg", "ai", (35, 28, None, None), (25, 20, None, None)),
    "choline_mg": ("mg", "ai", (550, 425, None, 3500), (425, 325, None, 3500)),
    "fluoride_ug": ("µg", "ai", (4000, 3000, None, 10000), (3000, 2500, None, 10000)),
}


def _micro_rows() -> List[Dict[str, Any]]:
    rows = []
    for key, (unit, ref, male, female) in _MICROS_ADULT.items():
        rows.append(_band(key, "male", 19, None, ref, *male, unit))
        rows.append(_band(key, "female", 19, None, ref, *female, unit))
    return rows


_AGE_BANDED = [
    _band("calcium_mg", "male", 19, 50, "rda", 1000, 800, 2500, 2500, "mg"),
    _band("calcium_mg", "female", 19, 50, "rda", 1000, 800, 2500, 2500, "mg"),
    _band("calcium_mg", "male", 51, 70, "rda", 1000, 800, 2000, 2000, "mg"),
    _band("calcium_mg", "female", 51, 70, "rda", 1200, 960, 2000, 2000, "mg"),
    _band("calcium_mg", "male", 71, None, "rda", 1200, 960, 2000, 2000, "mg"),
    _band("calcium_mg", "female", 71, None, "rda", 1200, 960, 2000, 2000, "mg"),
    _band("iron_mg", "male", 19, 50, "rda", 8, 6, 45, 45, "mg"),
    _band("iron_mg", "female", 19, 50, "rda", 18, 14, 45, 45, "mg"),
    _band("iron_mg", "male", 51, None, "rda", 8, 6, 45, 45, "mg"),
    _band("iron_mg", "female", 51, None, "rda", 8, 6, 45, 45, "mg"),
    _band("magnesium_mg", "male", 19, 30, "rda", 400, 320, 350, 350, "mg"),
    _band("magnesium_mg", "male", 31, None, "rda", 420, 336, 350, 350, "mg"),
    _band("magnesium_mg", "female", 19, 30, "rda", 310, 248, 350, 350, "mg"),
    _band("magnesium_mg", "female", 31, None, "rda", 320, 256, 350, 350, "mg"),
]

# Sex-agnostic caps (cap-only rows have no recommended amount)
_CAPS = [
    _band("sodium_mg", None, 19, None, "ai", 1500, 1200, 2300, 2300, "mg"),
    _band("cholesterol_mg", None, 19, None, "ai", None, None, 300, None, "mg"),
    _band("caffeine_mg", None, 19, None, "ai", None, None, 400, 400, "mg"),
]

_INFORMATIONAL = [
    _info(k, "g") for k in (
        "sugars_g", "sucrose_g", "glucose_g", "fructose_g", "lactose_g", "maltose_g",
        "sugar_alcohol_g", "sorbitol_g", "mannitol_g", "xylitol_g", "erythritol_g",
        "maltitol_g", "lactitol_g", "epa_g", "dha_g", "dpa_g", "pufa_18_4_g", "pufa_20_4_g",
        "histidine_g", "isoleucine_g", "leucine_g", "lysine_g", "methionine_g",
        "phenylalanine_g", "threonine_g", "tryptophan_g", "valine_g",
    )
] + [
    _info(k, "µg") for k in (
        "retinol_ug", "carotene_alpha_ug", "carotene_beta_ug", "cryptoxanthin_beta_ug",
        "lycopene_ug", "lutein_zeaxanthin_ug",
    )
] + [_info("betaine_mg", "mg")]


DRI_V1_BANDS: List[Dict[str, Any]] = (
    _energy_rows() + _MACROS + _micro_rows() + _AGE_BANDED + _CAPS + _INFORMATIONAL
)
