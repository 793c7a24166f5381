"""
Tests for the daily roundup generator.

Covers: trust gating, bucket precedence, cap-only nutrients, macro
composition flags, alias canonicalization, coverage clamping.
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from analytics.roundup import build_daily_roundup, classify_bucket, energy_coverage
from daily_records import DailyRecord
from nutrient_aliases import canonicalize_totals
from nutrient_targets import NutrientBand, resolve_targets


def _record(totals, estimated=None, date_key="2024-03-10"):
    return DailyRecord(user_id="u1", date_key=date_key, totals=totals, totals_estimated=estimated or {})


def _by_key(result):
    return {c["inputKey"]: c for c in result.candidates}


GOALS = {"energy_kcal": 2000, "fiber_g": 30, "vitamin_c_mg": 90}


# ─── Trust gating ─────────────────────────────────────────────


class TestTrustGating:

    def test_low_suppressed_on_untrusted_day(self):
        r = build_daily_roundup(_record({"energy_kcal": 800, "fiber_g": 15}), GOALS, {})
        assert r.coverage == pytest.approx(0.4)
        assert not r.is_trusted_day
        assert "fiber_g" not in _by_key(r)

    def test_low_emitted_on_trusted_day(self):
        r = build_daily_roundup(_record({"energy_kcal": 1800, "fiber_g": 15}), GOALS, {})
        assert r.is_trusted_day
        fiber = _by_key(r)["fiber_g"]
        assert fiber["bucket"] == "low"
        assert fiber["strength"] == pytest.approx(-0.5)
        assert fiber["direction"] == "negative"
        assert fiber["outputKey"] == "daily_roundup"

    def test_untrusted_at_goal_is_high(self):
        r = build_daily_roundup(_record({"energy_kcal": 500, "vitamin_c_mg": 95}), GOALS, {})
        assert _by_key(r)["vitamin_c_mg"]["bucket"] == "high"

    def test_trusted_slightly_over_goal_is_met(self):
        r = build_daily_roundup(_record({"energy_kcal": 1900, "vitamin_c_mg": 99}), GOALS, {})
        assert _by_key(r)["vitamin_c_mg"]["bucket"] == "met"

    def test_trusted_far_over_goal_is_high(self):
        r = build_daily_roundup(_record({"energy_kcal": 1900, "vitamin_c_mg": 120}), GOALS, {})
        vc = _by_key(r)["vitamin_c_mg"]
        assert vc["bucket"] == "high"
        assert vc["pctGoal"] == pytest.approx(120 / 90)

    def test_ok_range_not_emitted(self):
        r = build_daily_roundup(_record({"energy_kcal": 1900, "fiber_g": 27}), GOALS, {})
        assert "fiber_g" not in _by_key(r)


# ─── Caps ─────────────────────────────────────────────────────


class TestCaps:

    def test_over_safe_precedes_over_limit_and_high(self):
        band = NutrientBand("sodium_mg", None, 19, None, recommended=50,
                            upper_safe=100, upper_limit=150, unit="mg")
        r = build_daily_roundup(
            _record({"energy_kcal": 2000, "sodium_mg": 120}),
            {"energy_kcal": 2000, "sodium_mg": 50},
            {"sodium_mg": band},
        )
        sodium = _by_key(r)["sodium_mg"]
        assert sodium["bucket"] == "over_safe"
        assert sodium["upperSafe"] == 100
        assert sodium["upperLimit"] == 150
        assert sodium["unit"] == "mg"

    def test_over_limit(self):
        assert classify_bucket(200, 50, 4.0, 100, 150, True) == "over_limit"

    def test_cap_only_nutrient_uses_cap_as_goal(self):
        band = NutrientBand("caffeine_mg", None, 19, None, upper_safe=400, upper_limit=400, unit="mg")
        r = build_daily_roundup(_record({"energy_kcal": 2000, "caffeine": 500}), GOALS, {"caffeine_mg": band})
        caf = _by_key(r)["caffeine_mg"]
        assert caf["bucket"] == "over_limit"
        assert caf["goal"] == 400
        assert caf["strength"] == pytest.approx(0.25)

    def test_cap_only_under_cap_not_emitted(self):
        band = NutrientBand("caffeine_mg", None, 19, None, upper_safe=400, upper_limit=400)
        r = build_daily_roundup(_record({"energy_kcal": 2000, "caffeine_mg": 300}), GOALS, {"caffeine_mg": band})
        assert "caffeine_mg" not in _by_key(r)

    def test_cap_only_never_low(self):
        assert classify_bucket(0, None, 0.0, 400, 400, True) == "ok"


# ─── Macro flags ──────────────────────────────────────────────


class TestMacroFlags:

    def test_sugar_protein_fat_flags(self):
        r = build_daily_roundup(
            _record({"energy_kcal": 2000, "sugars_g": 200, "protein_g": 50, "fat_g": 130}),
            {"energy_kcal": 2000},
            {},
        )
        c = _by_key(r)
        assert c["macro_sugar_energy_ratio"]["bucket"] == "high"
        assert c["macro_sugar_energy_ratio"]["value"] == pytest.approx(0.4)
        assert c["macro_protein_energy_ratio"]["bucket"] == "low"
        assert c["macro_protein_energy_ratio"]["value"] == pytest.approx(0.1)
        assert c["macro_fat_energy_ratio"]["value"] == pytest.approx(0.585)

    def test_no_macro_flags_below_min_energy(self):
        r = build_daily_roundup(_record({"energy_kcal": 400, "sugars_g": 100}), {"energy_kcal": 2000}, {})
        assert not any(k.startswith("macro_") for k in _by_key(r))

    def test_protein_low_needs_trusted_day(self):
        r = build_daily_roundup(_record({"energy_kcal": 900, "protein_g": 10}), {"energy_kcal": 2000}, {})
        assert "macro_protein_energy_ratio" not in _by_key(r)


# ─── Normalization ────────────────────────────────────────────


class TestNormalization:

    def test_aliases_summed_into_canonical_key(self):
        r = build_daily_roundup(
            _record({"energy_kcal": 1800, "fiber": 5, "fiber_g": 4}),
            GOALS,
            {},
        )
        assert _by_key(r)["fiber_g"]["value"] == pytest.approx(9)

    def test_estimated_totals_count_toward_energy(self):
        r = build_daily_roundup(_record({"energy_kcal": 600}, {"energy_kcal": 600}), GOALS, {})
        assert r.energy_logged == pytest.approx(1200)
        assert r.is_trusted_day

    def test_non_finite_values_skipped(self):
        r = build_daily_roundup(_record({"energy_kcal": float("nan"), "fiber_g": "x"}), GOALS, {})
        assert r.coverage == 0.0
        assert r.energy_logged == 0.0

    def test_coverage_clamped(self):
        assert energy_coverage(10000, 2000) == 3.0
        assert energy_coverage(1000, None) == 0.0
        assert energy_coverage(1000, 0) == 0.0

    def test_canonicalize_totals_direct(self):
        out = canonicalize_totals({"protein": 20, "protein_g": 5.5, "sugar_g": 3, "total_sugars": 4,
                                   " caffeine ": 80, "sodium_mg": True, "bad": float("inf")})
        assert out == {"protein_g": 25.5, "sugars_g": 7.0, "caffeine_mg": 80.0}

    def test_kcal_day_not_flagged_low_in_kj(self):
        targets = resolve_targets(30, "female")
        r = build_daily_roundup(_record({"energy_kcal": 1800}), targets.goals, targets.bands)
        assert r.is_trusted_day
        assert "energy_kj" not in _by_key(r)
        assert "energy_kcal" not in _by_key(r)

    def test_kj_only_day_counts_toward_coverage(self):
        targets = resolve_targets(30, "female")
        r = build_daily_roundup(_record({"energy_kj": 8368}), targets.goals, targets.bands)
        assert r.energy_logged == pytest.approx(2000)
        assert r.coverage == pytest.approx(1.0)
        assert r.is_trusted_day

    def test_kj_tracks_kcal_over_safe(self):
        targets = resolve_targets(30, "female")
        r = build_daily_roundup(_record({"energy_kcal": 3200}), targets.goals, targets.bands)
        flags = _by_key(r)
        assert flags["energy_kcal"]["bucket"] == "over_safe"
        assert flags["energy_kj"]["bucket"] == "over_safe"
