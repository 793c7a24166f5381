"""Tests for env-driven engine configuration and connection-string resolution."""
import importlib.util
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config import DEFAULT_CONFIG, EngineConfig
from db_utils import get_conn_str, resolve_conn_str


class TestEngineConfig:

    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.trust_coverage_min == 0.60
        assert cfg.candidate_min_abs_rho == 0.15
        assert cfg.strong_min_abs_rho == 0.35
        assert cfg.strong_min_abs_effect == 0.8
        assert cfg.promote_min_seen == 5
        assert cfg.promote_min_streak == 2
        assert cfg.dri_profile_key == "dri_v1"

    def test_env_overrides(self):
        cfg = EngineConfig.from_env({
            "NUTRI_ENGINE_STRONG_MIN_ABS_RHO": "0.5",
            "NUTRI_ENGINE_PROMOTE_MIN_SEEN": "3",
            "NUTRI_ENGINE_DRI_PROFILE_KEY": " dri_v1 ",
        })
        assert cfg.strong_min_abs_rho == 0.5
        assert cfg.promote_min_seen == 3
        assert cfg.dri_profile_key == "dri_v1"

    def test_unparseable_value_keeps_default(self):
        cfg = EngineConfig.from_env({"NUTRI_ENGINE_MIN_PAIRS": "ten"})
        assert cfg.min_pairs == DEFAULT_CONFIG.min_pairs

    def test_env_reaches_default_config(self, monkeypatch):
        monkeypatch.setenv("NUTRI_ENGINE_TRUST_COVERAGE_MIN", "0.9")
        monkeypatch.setenv("NUTRI_ENGINE_PROMOTE_MIN_SEEN", "7")
        path = os.path.join(os.path.dirname(__file__), "..", "src", "config.py")
        spec = importlib.util.spec_from_file_location("config_from_env", path)
        fresh = importlib.util.module_from_spec(spec)
        monkeypatch.setitem(sys.modules, "config_from_env", fresh)
        spec.loader.exec_module(fresh)
        assert fresh.DEFAULT_CONFIG.trust_coverage_min == 0.9
        assert fresh.DEFAULT_CONFIG.promote_min_seen == 7
        assert fresh.DEFAULT_CONFIG.min_pairs == 10

    def test_frozen(self):
        with pytest.raises(Exception):
            DEFAULT_CONFIG.min_pairs = 3


class TestConnStr:

    def test_postgres_scheme_normalized(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_CONNECTION_STRING", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@h/db")
        assert get_conn_str() == "postgresql://u:p@h/db"

    def test_primary_var_wins(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_CONNECTION_STRING", "postgresql://a/b")
        monkeypatch.setenv("DATABASE_URL", "postgresql://c/d")
        assert get_conn_str() == "postgresql://a/b"

    def test_missing_raises(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_CONNECTION_STRING", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError):
            resolve_conn_str()
