"""Contract tests for the per-user analysis run.

Covers:
- parameter validation fallbacks
- roundup / correlation pass independence
- insufficient-data reporting (not an error)
- persistence errors surfaced to the direct caller
- best-effort wrapper never raising
- _overall_status
"""

import os
import sys
from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pipeline.user_analysis as ua
from constants import CORRELATION_ENGINE_VERSION, ROUNDUP_VERSION
from daily_records import DailyRecord
from errors import AnalysisInputError, PersistenceError
from pipeline.user_analysis import UserAnalysisPipeline, normalize_run_params, run_analysis_best_effort
from promotion import PromotionSummary


def _records(n):
    start = date(2024, 1, 1)
    return [
        DailyRecord(
            "u1",
            (start + timedelta(days=i)).isoformat(),
            totals={"energy_kcal": 1500.0 + 10 * i, "sugars_g": float(i), "fiber_g": 10.0,
                    "checkin_mood": float(21 - i)},
        )
        for i in range(n)
    ]


@pytest.fixture
def pipeline(monkeypatch):
    store = MagicMock()
    store.store.side_effect = lambda uid, dk, ver, cands, meta=None: len(cands)
    promoter = MagicMock()
    promoter.promote.return_value = PromotionSummary(newly_surfaced_count=2, processed_count=10)
    monkeypatch.setattr(ua, "fetch_user_profile", lambda cs, uid: {
        "age": 30, "sex": "female", "overrides": {}, "profile_key": None,
    })
    p = UserAnalysisPipeline("postgresql://x", pack_store=store, promoter=promoter)
    return p


def _versions(store):
    return [c[0][2] for c in store.store.call_args_list]


# ─── Parameter validation ────────────────────────────────────


class TestNormalizeRunParams:

    def test_defaults(self):
        assert normalize_run_params() == {"window_days": 120, "lag_days": 1, "min_support_days": 4, "top_k": 150}

    def test_out_of_range_falls_back(self):
        p = normalize_run_params(window_days=7, lag_days=30, min_support_days=1, top_k=5)
        assert p == {"window_days": 120, "lag_days": 1, "min_support_days": 4, "top_k": 150}

    def test_in_range_kept(self):
        p = normalize_run_params(window_days=365, lag_days=2, min_support_days=30, top_k=500)
        assert p == {"window_days": 365, "lag_days": 2, "min_support_days": 30, "top_k": 500}

    def test_non_numeric_falls_back(self):
        assert normalize_run_params(window_days="90", top_k=float("nan"))["window_days"] == 120


# ─── run_analysis ────────────────────────────────────────────


class TestRunAnalysis:

    def test_missing_user_rejected(self, pipeline):
        with pytest.raises(AnalysisInputError):
            pipeline.run_analysis("  ")

    def test_full_run(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: _records(21))
        out = pipeline.run_analysis("u1")

        assert _versions(pipeline.pack_store) == [ROUNDUP_VERSION, CORRELATION_ENGINE_VERSION]
        assert out["dateKey"] == "2024-01-21"
        assert out["storedCount"] > 0
        assert out["promotedCount"] == 2
        assert len(out["top"]) <= 50
        assert out["roundup"]["dateKey"] == "2024-01-21"
        assert out["roundup"]["backfilledDays"] == 0
        assert out["analysis_status"] == "success"
        assert "message" not in out

        meta = pipeline.pack_store.store.call_args_list[1][0][4]
        assert meta == {"windowDays": 120, "lagDays": 1}
        args = pipeline.promoter.promote.call_args[0]
        assert args[0] == "u1" and args[1] == "2024-01-21" and args[3] == 1

    def test_only_returned_top_is_promoted(self, pipeline, monkeypatch):
        start = date(2024, 1, 1)
        recs = [
            DailyRecord("u1", (start + timedelta(days=i)).isoformat(),
                        totals={**{f"f{k}": float(i + k) for k in range(40)}, "checkin_mood": float(31 - i)})
            for i in range(30)
        ]
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: recs)
        out = pipeline.run_analysis("u1")

        stored = pipeline.pack_store.store.call_args_list[-1][0][3]
        promoted = pipeline.promoter.promote.call_args[0][2]
        assert len(stored) > 50
        assert len(promoted) == 50
        assert promoted == out["top"]

    def test_fetch_limit_bounds_history(self, pipeline, monkeypatch):
        seen = {}

        def fake_fetch(cs, uid, limit):
            seen["limit"] = limit
            return _records(3)

        monkeypatch.setattr(ua, "fetch_daily_records", fake_fetch)
        pipeline.run_analysis("u1", window_days=60, lag_days=2)
        assert seen["limit"] == 72

    def test_insufficient_pairs_still_runs_roundup(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: _records(4))
        out = pipeline.run_analysis("u1")

        assert out["message"] == "Not enough days yet"
        assert out["storedCount"] == 0
        assert out["top"] == []
        assert _versions(pipeline.pack_store) == [ROUNDUP_VERSION]
        assert out["roundup"]["dateKey"] == "2024-01-04"
        assert out["analysis_status"] == "degraded"
        assert "insufficient_lag_pairs" in out["degraded_reasons"]
        pipeline.promoter.promote.assert_not_called()

    def test_roundup_failure_does_not_block_correlations(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: _records(21))

        def boom(cs, uid):
            raise RuntimeError("profile table missing")

        monkeypatch.setattr(ua, "fetch_user_profile", boom)
        out = pipeline.run_analysis("u1")
        assert "roundup_exception" in out["degraded_reasons"]
        assert out["analysis_status"] == "degraded"
        assert _versions(pipeline.pack_store) == [CORRELATION_ENGINE_VERSION]
        assert out["promotedCount"] == 2

    def test_persistence_error_raised_after_other_pass(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: _records(21))

        def store(uid, dk, ver, cands, meta=None):
            if ver == CORRELATION_ENGINE_VERSION:
                raise PersistenceError("disk full")
            return len(cands)

        pipeline.pack_store.store.side_effect = store
        with pytest.raises(PersistenceError):
            pipeline.run_analysis("u1")
        assert ROUNDUP_VERSION in _versions(pipeline.pack_store)

    def test_backfill_stores_every_day(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: _records(12))
        out = pipeline.run_analysis("u1", backfill_roundups=True)
        assert _versions(pipeline.pack_store).count(ROUNDUP_VERSION) == 12
        assert out["roundup"]["backfilledDays"] == 12
        assert out["roundup"]["dateKey"] == "2024-01-12"

    def test_no_records(self, pipeline, monkeypatch):
        monkeypatch.setattr(ua, "fetch_daily_records", lambda cs, uid, limit: [])
        out = pipeline.run_analysis("u1")
        assert out["roundup"]["storedCount"] == 0
        assert "no_daily_records" in out["degraded_reasons"]
        pipeline.pack_store.store.assert_not_called()


# ─── best effort ─────────────────────────────────────────────


class TestBestEffort:

    def test_swallows_and_returns_none(self):
        p = MagicMock()
        p.run_analysis.side_effect = PersistenceError("db down")
        assert run_analysis_best_effort("u1", pipeline=p) is None

    def test_returns_result(self):
        p = MagicMock()
        p.run_analysis.return_value = {"userId": "u1"}
        assert run_analysis_best_effort("u1", pipeline=p, window_days=30) == {"userId": "u1"}
        p.run_analysis.assert_called_once_with("u1", window_days=30)


# ─── _overall_status ─────────────────────────────────────────


class TestOverallStatus:

    def test_success(self):
        assert UserAnalysisPipeline._overall_status([]) == "success"

    def test_degraded(self):
        assert UserAnalysisPipeline._overall_status(["insufficient_lag_pairs"]) == "degraded"
        assert UserAnalysisPipeline._overall_status(["roundup_exception"]) == "degraded"

    def test_failed_when_both_passes_fail(self):
        assert UserAnalysisPipeline._overall_status(["roundup_exception", "correlation_exception"]) == "failed"
