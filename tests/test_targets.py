"""
Tests for nutrient target resolution.

Covers: band precedence (sex-specific over sex-agnostic), age windows,
layer merging, override shapes, fallback degradation, dataset registry.
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nutrient_targets import (
    FALLBACK_GOALS,
    NutrientBand,
    clamp_age,
    goals_from_bands,
    merge_goal_layers,
    normalize_sex,
    override_layer,
    resolve_bands,
    resolve_targets,
)
from reference import get_dri_dataset


def _band(key, sex, lo, hi, rec, **kw):
    return NutrientBand(nutrient_key=key, sex=sex, min_years=lo, max_years=hi, recommended=rec, **kw)


# ─── Band resolution ──────────────────────────────────────────


class TestResolveBands:

    def test_sex_specific_beats_agnostic(self):
        bands = [
            _band("zinc_mg", None, 19, None, 9),
            _band("zinc_mg", "male", 19, None, 11),
        ]
        picked = resolve_bands(bands, 25, "male")
        assert goals_from_bands(picked)["zinc_mg"] == 11

    def test_sex_specific_wins_regardless_of_order(self):
        bands = [
            _band("zinc_mg", "male", 19, None, 11),
            _band("zinc_mg", None, 19, None, 9),
        ]
        picked = resolve_bands(bands, 25, "male")
        assert picked["zinc_mg"].recommended == 11

    def test_other_sex_band_ignored(self):
        bands = [
            _band("zinc_mg", None, 19, None, 9),
            _band("zinc_mg", "female", 19, None, 8),
        ]
        picked = resolve_bands(bands, 25, "male")
        assert picked["zinc_mg"].recommended == 9

    def test_age_window_inclusive(self):
        bands = [_band("iron_mg", "female", 19, 50, 18), _band("iron_mg", "female", 51, None, 8)]
        assert resolve_bands(bands, 50, "female")["iron_mg"].recommended == 18
        assert resolve_bands(bands, 51, "female")["iron_mg"].recommended == 8

    def test_unbounded_max_years(self):
        bands = [_band("sodium_mg", None, 19, None, 1500)]
        assert "sodium_mg" in resolve_bands(bands, 120, "male")

    def test_under_min_age_skipped(self):
        bands = [_band("sodium_mg", None, 19, None, 1500)]
        assert resolve_bands(bands, 10, "male") == {}

    def test_nonpositive_recommended_is_not_a_goal(self):
        picked = {"caffeine_mg": _band("caffeine_mg", None, 19, None, None, upper_safe=400)}
        assert goals_from_bands(picked) == {}
        assert picked["caffeine_mg"].has_cap


# ─── Layer merge ──────────────────────────────────────────────


class TestMergeGoalLayers:

    def test_rightmost_wins(self):
        merged = merge_goal_layers([{"protein_g": 50}, {"protein_g": 56}, {"protein_g": 120}])
        assert merged["protein_g"] == 120

    def test_invalid_later_value_does_not_erase(self):
        merged = merge_goal_layers([{"protein_g": 50}, {"protein_g": float("nan")}, {"protein_g": -3}])
        assert merged["protein_g"] == 50

    def test_zero_and_strings_dropped(self):
        merged = merge_goal_layers([{"fiber_g": 0, "water_total_ml": "abc", "iron_mg": "18"}])
        assert "fiber_g" not in merged
        assert "water_total_ml" not in merged
        assert merged["iron_mg"] == 18.0

    def test_none_layers_skipped(self):
        assert merge_goal_layers([None, {"a": 1}, None]) == {"a": 1.0}

    def test_override_layer_shapes(self):
        flat = override_layer({"protein_g": {"value": 140, "unit": "g"}, "fiber_g": 35})
        assert flat == {"protein_g": 140, "fiber_g": 35}


# ─── resolve_targets ──────────────────────────────────────────


class TestResolveTargets:

    def test_male_25_uses_dataset(self):
        t = resolve_targets(25, "male")
        assert not t.used_fallback
        assert t.goals["protein_g"] == 56
        assert t.goals["energy_kcal"] == 2600
        assert t.bands["sodium_mg"].upper_limit == 2300

    def test_sex_aliases(self):
        assert normalize_sex("M") == "male"
        assert normalize_sex(" woman ") == "female"
        assert normalize_sex("other") is None

    def test_age_clamped(self):
        assert clamp_age(-4) == 0
        assert clamp_age(300) == 120
        assert clamp_age("x") is None
        assert clamp_age(True) is None

    def test_overrides_win_over_dataset(self):
        t = resolve_targets(25, "male", overrides={"protein_g": {"value": 150, "unit": "g"}})
        assert t.goals["protein_g"] == 150

    def test_missing_sex_degrades_to_fallback(self):
        t = resolve_targets(25, None)
        assert t.used_fallback
        assert t.goals == {k: float(v) for k, v in FALLBACK_GOALS.items()}
        assert t.bands == {}

    def test_unknown_dataset_degrades_to_fallback(self):
        t = resolve_targets(30, "female", profile_key="dri_v999")
        assert t.used_fallback
        assert t.goals["energy_kcal"] == 2000

    def test_fallback_still_applies_overrides(self):
        t = resolve_targets(None, None, overrides={"energy_kcal": 2500})
        assert t.used_fallback
        assert t.goals["energy_kcal"] == 2500

    def test_never_raises_on_garbage(self):
        t = resolve_targets(object(), 42, overrides={"x": {"value": "nope"}})
        assert t.used_fallback


class TestDatasetRegistry:

    def test_known_profile(self):
        ds = get_dri_dataset("dri_v1")
        assert ds["version"] == 1
        assert any(r["nutrient_key"] == "caffeine_mg" for r in ds["bands"])

    def test_unknown_profile(self):
        assert get_dri_dataset("nope") is None
        assert get_dri_dataset(None) is None

    def test_informational_rows_have_no_values(self):
        ds = get_dri_dataset("dri_v1")
        info = [r for r in ds["bands"] if r["source"].startswith("Informational")]
        assert info
        assert all(r["recommended"] is None and r["upper_limit"] is None for r in info)
