"""
Nutrient key canonicalization.

Historical food sources wrote the same nutrient under several spellings
(bare amino-acid names next to their ``_g`` columns, USDA panel names next
to our panel fields).  Every alias is listed here once; normalization sums
duplicates into the canonical key so a nutrient is never counted twice.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

NUTRIENT_ALIASES_VERSION = 1

_AMINO_ACIDS = (
    "tryptophan", "threonine", "isoleucine", "leucine", "lysine", "methionine",
    "cystine", "phenylalanine", "tyrosine", "valine", "arginine", "histidine",
    "alanine", "aspartic_acid", "glutamic_acid", "glycine", "proline", "serine",
)

NUTRIENT_ALIASES: Dict[str, str] = {
    # Macros
    "protein": "protein_g",
    "carbohydrate": "carbs_g",
    "carbohydrates_g": "carbs_g",
    "fiber": "fiber_g",
    "total_sugars": "sugars_g",
    "sugar_g": "sugars_g",
    "total_lipid_fat": "fat_g",
    "added_sugars": "added_sugars_g",
    "sugar_alcohol": "sugar_alcohol_g",
    # Fat breakdown
    "fatty_acids_total_saturated": "sat_fat_g",
    "fatty_acids_total_trans": "trans_fat_g",
    "fatty_acids_total_monounsaturated": "mono_fat_g",
    "fatty_acids_total_polyunsaturated": "poly_fat_g",
    "pufa_20_5_n_3_epa": "epa_g",
    "pufa_22_6_n_3_dha": "dha_g",
    "pufa_22_5_n_3_dpa": "dpa_g",
    "cholesterol": "cholesterol_mg",
    # Vitamins
    "vitamin_c": "vitamin_c_mg",
    "thiamin": "vitamin_b1_mg",
    "riboflavin": "vitamin_b2_mg",
    "niacin": "vitamin_b3_mg",
    "pantothenic_acid": "vitamin_b5_mg",
    "vitamin_b_6": "vitamin_b6_mg",
    "biotin": "vitamin_b7_ug",
    "folate_dfe": "folate_dfe_ug",
    "vitamin_b_12": "vitamin_b12_ug",
    "vitamin_k_phylloquinone": "vitamin_k_ug",
    "vitamin_e_alpha_tocopherol": "vitamin_e_mg",
    "vitamin_a": "vitamin_a_rae_ug",
    "vitamin_d": "vitamin_d_ug",
    # Minerals
    "sodium": "sodium_mg",
    "potassium_k": "potassium_mg",
    "calcium": "calcium_mg",
    "iron": "iron_mg",
    "phosphorus_p": "phosphorus_mg",
    "zinc_zn": "zinc_mg",
    "copper_cu": "copper_mg",
    "selenium_se": "selenium_ug",
    "manganese_mn": "manganese_mg",
    "iodine": "iodine_ug",
    "chromium_cr": "chromium_ug",
    "fluoride_f": "fluoride_ug",
    # Other compounds
    "caffeine": "caffeine_mg",
    "betaine": "betaine_mg",
    "choline_total": "choline_mg",
    "alcohol_ethyl": "alcohol_g",
}
NUTRIENT_ALIASES.update({name: f"{name}_g" for name in _AMINO_ACIDS})


def canonical_key(key: str) -> str:
    k = str(key or "").strip()
    return NUTRIENT_ALIASES.get(k, k)


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    v = float(value)
    return v if math.isfinite(v) else None


def canonicalize_totals(totals: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Map every key to its canonical spelling, summing duplicates.

    Non-numeric and non-finite values are dropped.
    """
    out: Dict[str, float] = {}
    for raw_key, raw_val in (totals or {}).items():
        v = _finite(raw_val)
        if v is None:
            continue
        key = canonical_key(raw_key)
        if not key:
            continue
        out[key] = out.get(key, 0.0) + v
    return out
